"""
Document model used by the detection engine.

A page is captured once with ``SNAPSHOT_SCRIPT`` (run through Playwright's
``page.evaluate``) and rebuilt here as a tree of ``DomNode`` objects. The
detector, extractor and visual clusterer only ever talk to this model, so the
same code runs against a live page snapshot and against hand-built trees in
tests.

Every element in the live page is tagged with ``data-formmaster-id`` while it
is serialized; ``DomNode.selector`` uses that tag to address the element again
through a Playwright locator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

NODE_ID_ATTRIBUTE = "data-formmaster-id"
DOCUMENT_TAG = "#document"
SHADOW_ROOT_TAG = "#shadow-root"

SNAPSHOT_SCRIPT = """
() => {
    let counter = 0;
    const PROPS = ['name', 'id', 'type', 'disabled', 'required',
                   'placeholder', 'autocomplete', 'action', 'method'];
    const serialize = (node) => {
        if (node.nodeType === Node.DOCUMENT_NODE || node.nodeType === Node.DOCUMENT_FRAGMENT_NODE) {
            return {
                tag: node.nodeType === Node.DOCUMENT_NODE ? '#document' : '#shadow-root',
                children: Array.from(node.children).map(serialize),
            };
        }
        counter += 1;
        const nodeId = String(counter);
        node.setAttribute('data-formmaster-id', nodeId);
        const style = window.getComputedStyle(node);
        const rect = node.getBoundingClientRect();
        const attributes = {};
        for (const attr of Array.from(node.attributes)) {
            attributes[attr.name] = attr.value;
        }
        const properties = {};
        for (const key of PROPS) {
            const value = node[key];
            if (typeof value === 'string' || typeof value === 'boolean') {
                properties[key] = value;
            }
        }
        const text = Array.from(node.childNodes)
            .filter((child) => child.nodeType === Node.TEXT_NODE)
            .map((child) => child.textContent)
            .join('');
        return {
            tag: node.tagName.toLowerCase(),
            nodeId,
            attributes,
            properties,
            style: {display: style.display, visibility: style.visibility, opacity: style.opacity},
            rect: {top: rect.top, bottom: rect.bottom, left: rect.left, right: rect.right},
            text,
            children: Array.from(node.children).map(serialize),
            shadowRoot: node.shadowRoot ? serialize(node.shadowRoot) : null,
        };
    };
    return serialize(document);
}
"""


@dataclass
class Rect:
    top: float = 0.0
    bottom: float = 0.0
    left: float = 0.0
    right: float = 0.0

    @property
    def height(self) -> float:
        return self.bottom - self.top


@dataclass(eq=False)
class DomNode:
    """
    One node of a document snapshot.

    Nodes compare by identity: two snapshots of the same markup yield
    distinct nodes, and a node reached through two paths is the same node.
    """

    tag: str
    node_id: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)
    properties: Dict[str, Any] = field(default_factory=dict)
    style: Dict[str, str] = field(default_factory=dict)
    rect: Rect = field(default_factory=Rect)
    text: str = ""
    children: List["DomNode"] = field(default_factory=list)
    shadow_root: Optional["DomNode"] = None
    parent: Optional["DomNode"] = field(default=None, repr=False)
    host: Optional["DomNode"] = field(default=None, repr=False)

    def __post_init__(self):
        for child in self.children:
            child.parent = self
        if self.shadow_root is not None:
            self.shadow_root.host = self

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "DomNode":
        """Build a node tree from the dict produced by ``SNAPSHOT_SCRIPT``."""
        shadow = data.get("shadowRoot")
        return cls(
            tag=(data.get("tag") or "").lower(),
            node_id=data.get("nodeId"),
            attributes=dict(data.get("attributes") or {}),
            properties=dict(data.get("properties") or {}),
            style=dict(data.get("style") or {}),
            rect=Rect(**(data.get("rect") or {})),
            text=data.get("text") or "",
            children=[cls.from_snapshot(child) for child in data.get("children") or []],
            shadow_root=cls.from_snapshot(shadow) if shadow else None,
        )

    # --- node kind -------------------------------------------------------

    @property
    def is_element(self) -> bool:
        return not self.tag.startswith("#")

    @property
    def parent_element(self) -> Optional["DomNode"]:
        if self.parent is not None and self.parent.is_element:
            return self.parent
        return None

    @property
    def owner_document(self) -> Optional["DomNode"]:
        """The ``#document`` root this node belongs to, or None when detached."""
        node = self
        while node.parent is not None:
            node = node.parent
        if node.tag == DOCUMENT_TAG:
            return node
        if node.tag == SHADOW_ROOT_TAG and node.host is not None:
            return node.host.owner_document
        return None

    @property
    def selector(self) -> Optional[str]:
        if self.node_id is None:
            return None
        return f'[{NODE_ID_ATTRIBUTE}="{self.node_id}"]'

    # --- attribute and property access ------------------------------------

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    def has_attribute(self, name: str) -> bool:
        return name in self.attributes

    @property
    def class_list(self) -> List[str]:
        return (self.attributes.get("class") or "").split()

    def prop(self, name: str, default: Any = "") -> Any:
        """Read a DOM property, falling back to the attribute of the same name."""
        if name in self.properties:
            return self.properties[name]
        if name in ("disabled", "required"):
            return name in self.attributes
        return self.attributes.get(name, default)

    def computed_style(self, name: str) -> str:
        return self.style.get(name, "")

    @property
    def text_content(self) -> str:
        return self.text + "".join(child.text_content for child in self.children)

    # --- traversal --------------------------------------------------------

    def iter_descendants(self) -> Iterator["DomNode"]:
        """Yield descendant elements in document order, not entering shadow roots."""
        for child in self.children:
            if child.is_element:
                yield child
            yield from child.iter_descendants()

    def find_all(
        self, *tags: str, predicate: Optional[Callable[["DomNode"], bool]] = None
    ) -> List["DomNode"]:
        wanted = {t.lower() for t in tags}
        return [
            node
            for node in self.iter_descendants()
            if (not wanted or node.tag in wanted) and (predicate is None or predicate(node))
        ]

    def closest(self, tag: str) -> Optional["DomNode"]:
        node: Optional[DomNode] = self
        while node is not None and node.is_element:
            if node.tag == tag:
                return node
            node = node.parent_element
        return None


async def snapshot_page(page) -> DomNode:
    """Capture the current state of a Playwright page as a ``DomNode`` tree."""
    data = await page.evaluate(SNAPSHOT_SCRIPT)
    root = DomNode.from_snapshot(data)
    logger.debug(f"Captured DOM snapshot with {sum(1 for _ in root.iter_descendants())} top-level elements")
    return root
