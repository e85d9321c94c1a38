import logging
from typing import List, Optional

from config import config
from detection.dom import DomNode
from detection.extractor import describe_control
from detection.models import FormDescriptor
from detection.visibility import is_hidden

logger = logging.getLogger(__name__)

MIN_CLUSTER_SIZE = 2


def _is_interactive_control(node: DomNode) -> bool:
    if node.tag == "input":
        return (node.get_attribute("type") or "").lower() != "hidden"
    if node.tag in ("select", "textarea"):
        return True
    return node.get_attribute("contenteditable") == "true"


def _is_addressable(node: DomNode) -> bool:
    return bool(node.prop("name") or node.prop("id"))


def _collect_controls(snapshot: DomNode) -> List[DomNode]:
    controls = []
    for node in snapshot.find_all(predicate=_is_interactive_control):
        try:
            if not is_hidden(node) and not node.prop("disabled", False):
                controls.append(node)
        except Exception as e:
            logger.warning(f"Skipping control {node.node_id!r} during visual detection: {e}")
    return controls


def _cluster(controls: List[DomNode], threshold: float) -> List[List[DomNode]]:
    clusters: List[List[DomNode]] = []
    cluster: List[DomNode] = []
    last_bottom = None
    for control in sorted(controls, key=lambda node: node.rect.top):
        if last_bottom is None or abs(control.rect.top - last_bottom) < threshold:
            cluster.append(control)
        else:
            if len(cluster) >= MIN_CLUSTER_SIZE:
                clusters.append(cluster)
            cluster = [control]
        last_bottom = control.rect.bottom
    if len(cluster) >= MIN_CLUSTER_SIZE:
        clusters.append(cluster)
    return clusters


def fallback_visual_detection(
    snapshot: DomNode, threshold: Optional[float] = None
) -> List[FormDescriptor]:
    """
    Group visually adjacent controls into synthetic forms.

    Used when a page has no usable ``<form>`` element. Controls are ordered by
    their top edge and a control joins the current group when its top lies
    within ``threshold`` of the previous control's bottom. Groups of a single
    control are dropped, and controls without a name or id are left out of
    the fields.
    """
    if threshold is None:
        threshold = config.detection.visual_proximity_threshold
    controls = _collect_controls(snapshot)
    if not controls:
        return []

    forms = []
    for members in _cluster(controls, threshold):
        # Only controls with a name or id can be addressed by a data row
        fields = [describe_control(member) for member in members if _is_addressable(member)]
        if not fields:
            continue
        index = len(forms)
        forms.append(
            FormDescriptor(
                container=None,
                id=f"synthetic-form-{index}",
                name=f"syntheticForm{index}",
                fields=fields,
                synthetic=True,
            )
        )
    logger.info(f"Visual fallback produced {len(forms)} synthetic form(s) from {len(controls)} controls")
    return forms
