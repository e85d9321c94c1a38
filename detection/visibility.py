from detection.dom import DomNode

HIDDEN_CLASS_MARKERS = ("hidden", "invisible", "display-none")


def _is_transparent(opacity: str) -> bool:
    try:
        return float(opacity) == 0.0
    except (TypeError, ValueError):
        return False


def _hides_itself(node: DomNode) -> bool:
    if node.computed_style("display") == "none":
        return True
    if node.computed_style("visibility") == "hidden":
        return True
    if _is_transparent(node.computed_style("opacity")):
        return True
    if any(marker in node.class_list for marker in HIDDEN_CLASS_MARKERS):
        return True
    aria_hidden = node.get_attribute("aria-hidden")
    return aria_hidden is not None and aria_hidden != "false"


def is_hidden(node: DomNode) -> bool:
    """
    Whether a node is not meaningfully interactable.

    True when the node is detached from any document, or when the node or any
    ancestor element up to its tree root is hidden by style, by a hidden class
    marker, or by ``aria-hidden``. Evaluated fresh on every call.
    """
    if node.owner_document is None:
        return True
    current = node
    while current is not None and current.is_element:
        if _hides_itself(current):
            return True
        current = current.parent_element
    return False
