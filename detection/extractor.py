"""
Field metadata extraction for detected forms.
"""

import logging
from typing import Optional

from config import config
from detection.dom import DomNode
from detection.models import FieldDescriptor, FormDescriptor
from detection.visibility import is_hidden

logger = logging.getLogger(__name__)

# Elements that appear in HTMLFormElement.elements
LISTED_ELEMENTS = ("button", "fieldset", "input", "object", "output", "select", "textarea")


def _tree_root(node: DomNode) -> DomNode:
    while node.parent is not None:
        node = node.parent
    return node


def _resolve_label(control: DomNode) -> str:
    """Label text for a control: ``label[for=id]`` first, then a wrapping label."""
    control_id = control.prop("id")
    if control_id:
        for label in _tree_root(control).find_all("label"):
            if label.get_attribute("for") == control_id:
                return label.text_content.strip()
    parent_label = control.closest("label")
    if parent_label is not None:
        return parent_label.text_content.strip()
    return ""


def describe_control(control: DomNode, label: str = "") -> FieldDescriptor:
    return FieldDescriptor(
        name=control.prop("name") or "",
        id=control.prop("id") or "",
        type=(control.prop("type") or control.tag).lower(),
        label=label,
        placeholder=control.prop("placeholder") or "",
        required=bool(control.prop("required", False)),
        autocomplete=control.prop("autocomplete") or "",
        element=control,
    )


def _extract_field(control: DomNode) -> Optional[FieldDescriptor]:
    if not control.prop("name") and not control.prop("id"):
        return None
    if is_hidden(control):
        return None
    if control.prop("disabled", False):
        return None
    return describe_control(control, label=_resolve_label(control))


def extract_form_metadata(form_element: DomNode, max_fields: Optional[int] = None) -> FormDescriptor:
    """
    Describe a form container and its addressable fields.

    Controls without a name or id, hidden controls and disabled controls are
    left out. Fields keep document order. A control that cannot be read is
    skipped without affecting the rest of the form.
    """
    if max_fields is None:
        max_fields = config.detection.max_form_elements

    fields = []
    used = set()
    for control in form_element.find_all(*LISTED_ELEMENTS):
        if id(control) in used:
            continue
        used.add(id(control))
        try:
            descriptor = _extract_field(control)
        except Exception as e:
            logger.warning(f"Skipping unreadable control {control.node_id!r}: {e}")
            continue
        if descriptor is None:
            continue
        if len(fields) >= max_fields:
            logger.warning(
                f"Form {form_element.prop('id')!r} has more than {max_fields} fields; ignoring the rest"
            )
            break
        fields.append(descriptor)

    return FormDescriptor(
        container=form_element,
        id=form_element.prop("id") or "",
        name=form_element.prop("name") or "",
        action=form_element.prop("action") or "",
        method=(form_element.prop("method") or "").upper(),
        fields=fields,
        synthetic=False,
    )
