"""
Form detection across the main document and nested shadow trees.
"""

import logging
from typing import Iterable, List, Optional

from config import config
from detection.dom import DomNode
from detection.visibility import is_hidden

logger = logging.getLogger(__name__)


def _visible_forms(root: DomNode) -> List[DomNode]:
    forms = []
    for form in root.find_all("form"):
        try:
            if not is_hidden(form):
                forms.append(form)
        except Exception as e:
            logger.warning(f"Skipping form node {form.node_id!r}: {e}")
    return forms


def _unique(nodes: Iterable[DomNode]) -> List[DomNode]:
    seen = set()
    result = []
    for node in nodes:
        if id(node) in seen:
            continue
        seen.add(id(node))
        result.append(node)
    return result


def detect_forms_in_shadow_dom(
    root_node, depth: int = 0, max_depth: Optional[int] = None
) -> List[DomNode]:
    """
    Collect visible forms hosted inside shadow roots below ``root_node``.

    Every shadow host found while walking ``root_node`` contributes the forms
    of its shadow tree, then the walk recurses into that tree. Descending
    stops silently once ``max_depth`` nested shadow trees have been entered.
    A root that cannot be walked yields an empty list.
    """
    if max_depth is None:
        max_depth = config.detection.max_shadow_depth
    walk = getattr(root_node, "iter_descendants", None)
    if walk is None:
        return []
    if depth >= max_depth:
        logger.debug(f"Shadow DOM depth limit {max_depth} reached; not descending further")
        return []

    forms: List[DomNode] = []
    candidates = [root_node] if getattr(root_node, "is_element", False) else []
    candidates.extend(walk())
    for node in candidates:
        try:
            shadow = node.shadow_root
            if shadow is None:
                continue
            forms.extend(_visible_forms(shadow))
            forms.extend(detect_forms_in_shadow_dom(shadow, depth + 1, max_depth))
        except Exception as e:
            logger.warning(f"Skipping shadow host {getattr(node, 'node_id', None)!r}: {e}")
    return forms


def detect_forms(document_context, max_depth: Optional[int] = None) -> List[DomNode]:
    """
    Find every visible form in ``document_context`` and its shadow trees.

    The same form reached through two paths is returned once. The order of
    the result carries no meaning.
    """
    if getattr(document_context, "find_all", None) is None:
        logger.warning("Document context cannot be queried; no forms detected")
        return []
    forms = _visible_forms(document_context)
    forms.extend(detect_forms_in_shadow_dom(document_context, max_depth=max_depth))
    unique_forms = _unique(forms)
    logger.debug(f"Detected {len(unique_forms)} form(s)")
    return unique_forms
