"""Python-side model of a captured page.

The page bridge serializes the live DOM in one pass (tags, attributes,
computed visibility, bounding boxes, form properties, text nodes and open
shadow roots). Everything the engines decide is decided over this tree.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Union

_WS_RE = re.compile(r"\s+")
_SIMPLE_SELECTOR_RE = re.compile(
    r"^(?P<tag>[a-zA-Z][\w-]*)?"
    r"(?:#(?P<id>[\w-]+))?"
    r"(?P<classes>(?:\.[\w-]+)*)"
    r"(?:\[(?P<attr>[\w-]+)(?:=[\"']?(?P<value>[^\"'\]]*)[\"']?)?\])?$"
)

NON_RENDERED_TAGS = frozenset(
    {"script", "style", "noscript", "template", "head", "meta", "link", "title"}
)


def js_round(value: float) -> int:
    """Round half up, matching ``Math.round``."""
    return math.floor(value + 0.5)


def normalize_space(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


@dataclass
class Rect:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def is_empty(self) -> bool:
        return self.width == 0 and self.height == 0

    def center(self) -> tuple[int, int]:
        return js_round(self.x + self.width / 2), js_round(self.y + self.height / 2)

    def close_to(self, other: Rect, tolerance: float) -> bool:
        return (
            abs(self.x - other.x) < tolerance
            and abs(self.y - other.y) < tolerance
            and abs(self.width - other.width) < tolerance
            and abs(self.height - other.height) < tolerance
        )

    @classmethod
    def from_list(cls, values: list[float] | None) -> Rect:
        if not values:
            return cls()
        return cls(*values[:4])


@dataclass(eq=False)
class TextNode:
    text: str
    parent: DomNode | None = field(default=None, repr=False)


@dataclass(eq=False)
class DomNode:
    node_id: int
    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    display: str = "block"
    visibility: str = "visible"
    opacity: float = 1.0
    rect: Rect = field(default_factory=Rect)
    value: str | None = None
    checked: bool | None = None
    selected: bool | None = None
    disabled: bool = False
    child_nodes: list[Union[DomNode, TextNode]] = field(default_factory=list)
    shadow_nodes: list[Union[DomNode, TextNode]] | None = None
    parent: DomNode | None = field(default=None, repr=False)
    in_shadow: bool = False

    # -- attributes ----------------------------------------------------------

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.attrs.get(name, default)

    def has_attr(self, name: str) -> bool:
        return name in self.attrs

    @property
    def classes(self) -> list[str]:
        return (self.attrs.get("class") or "").split()

    @property
    def class_name(self) -> str:
        return (self.attrs.get("class") or "").lower()

    @property
    def input_type(self) -> str:
        return (self.attrs.get("type") or "text").lower()

    # -- tree ----------------------------------------------------------------

    @property
    def children(self) -> list[DomNode]:
        return [c for c in self.child_nodes if isinstance(c, DomNode)]

    @property
    def shadow_children(self) -> list[DomNode]:
        return [c for c in self.shadow_nodes or [] if isinstance(c, DomNode)]

    def iter_descendants(self) -> Iterator[DomNode]:
        """Light-DOM descendants in document order (``querySelectorAll`` scope)."""
        for child in self.children:
            yield child
            yield from child.iter_descendants()

    def find_all(self, *tags: str) -> list[DomNode]:
        return [n for n in self.iter_descendants() if n.tag in tags]

    def contains(self, other: DomNode) -> bool:
        node: DomNode | None = other
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    # -- text ----------------------------------------------------------------

    def direct_text(self) -> str:
        return "".join(c.text for c in self.child_nodes if isinstance(c, TextNode))

    def text_content(self) -> str:
        parts: list[str] = []
        for child in self.child_nodes:
            if isinstance(child, TextNode):
                parts.append(child.text)
            else:
                parts.append(child.text_content())
        return "".join(parts)

    def inner_text(self) -> str:
        """Rendered text, skipping hidden and non-rendered subtrees."""
        parts: list[str] = []
        self._collect_rendered(parts)
        return normalize_space(" ".join(parts))

    def _collect_rendered(self, parts: list[str]) -> None:
        for child in self.child_nodes:
            if isinstance(child, TextNode):
                parts.append(child.text)
            elif child.tag not in NON_RENDERED_TAGS and not child.is_computed_hidden():
                child._collect_rendered(parts)

    # -- visibility ----------------------------------------------------------

    def is_computed_hidden(self) -> bool:
        return self.display == "none" or self.visibility == "hidden"

    def is_content_hidden(self) -> bool:
        return (
            self.is_computed_hidden()
            or self.opacity == 0
            or self.get("aria-hidden") == "true"
            or self.has_attr("hidden")
            or self.rect.is_empty
        )

    # -- matching ------------------------------------------------------------

    def matches(self, selector: str) -> bool:
        """Match a comma list of simple selectors (tag, #id, .class, [attr], [attr=v])."""
        return any(self._matches_simple(part.strip()) for part in selector.split(","))

    def _matches_simple(self, simple: str) -> bool:
        m = _SIMPLE_SELECTOR_RE.match(simple)
        if m is None:
            return False
        if m.group("tag") and m.group("tag").lower() != self.tag:
            return False
        if m.group("id") and self.get("id") != m.group("id"):
            return False
        classes = [c for c in m.group("classes").split(".") if c]
        if classes and not set(classes) <= set(self.classes):
            return False
        attr = m.group("attr")
        if attr:
            if attr not in self.attrs:
                return False
            if m.group("value") is not None and self.attrs[attr] != m.group("value"):
                return False
        return True

    def copy(self, keep: Callable[[DomNode], bool]) -> DomNode:
        """Deep copy of this subtree, dropping element subtrees rejected by *keep*."""
        clone = DomNode(
            node_id=self.node_id,
            tag=self.tag,
            attrs=dict(self.attrs),
            display=self.display,
            visibility=self.visibility,
            opacity=self.opacity,
            rect=self.rect,
            value=self.value,
            checked=self.checked,
            selected=self.selected,
            disabled=self.disabled,
            in_shadow=self.in_shadow,
        )
        clone.child_nodes = _copy_children(self.child_nodes, clone, keep)
        if self.shadow_nodes is not None:
            clone.shadow_nodes = _copy_children(self.shadow_nodes, clone, keep)
        return clone


def _copy_children(
    nodes: list[Union[DomNode, TextNode]],
    parent: DomNode,
    keep: Callable[[DomNode], bool],
) -> list[Union[DomNode, TextNode]]:
    copied: list[Union[DomNode, TextNode]] = []
    for node in nodes:
        if isinstance(node, TextNode):
            copied.append(TextNode(node.text, parent))
        elif keep(node):
            child = node.copy(keep)
            child.parent = parent
            copied.append(child)
    return copied


class Document:
    """A captured page: metadata plus the node tree rooted at ``<html>``."""

    def __init__(
        self,
        root: DomNode,
        url: str = "",
        title: str = "",
        ready_state: str = "complete",
        viewport: tuple[int, int] = (0, 0),
        scroll_y: float = 0.0,
    ) -> None:
        self.root = root
        self.url = url
        self.title = title
        self.ready_state = ready_state
        self.viewport_width, self.viewport_height = viewport
        self.scroll_y = scroll_y
        self._by_id: dict[int, DomNode] = {}
        self._index(root)

    def _index(self, node: DomNode) -> None:
        self._by_id[node.node_id] = node
        for child in node.children + node.shadow_children:
            self._index(child)

    @property
    def body(self) -> DomNode:
        if self.root.tag == "body":
            return self.root
        for child in self.root.children:
            if child.tag == "body":
                return child
        return self.root

    def get(self, node_id: int) -> DomNode | None:
        return self._by_id.get(node_id)

    def iter_elements(self) -> Iterator[DomNode]:
        yield self.root
        yield from self.root.iter_descendants()

    def iter_shadow_hosts(self) -> Iterator[DomNode]:
        for node in self.iter_elements():
            if node.shadow_nodes is not None:
                yield node

    def count(self, predicate: Callable[[DomNode], bool]) -> int:
        return sum(1 for n in self.iter_elements() if predicate(n))

    def deep_find(self, selector: str) -> DomNode | None:
        """First match in the light DOM, else in shadow roots, host by host."""
        return _deep_find(self.root, selector)

    def deep_find_all(self, *tags: str) -> list[DomNode]:
        """All elements with *tags*, including those inside shadow roots."""
        found: list[DomNode] = []
        _deep_collect(self.root, tags, found)
        return found

    def element_by_id(self, html_id: str) -> DomNode | None:
        for node in self.iter_elements():
            if node.get("id") == html_id:
                return node
        return None

    def label_for(self, html_id: str) -> DomNode | None:
        for node in self.iter_elements():
            if node.tag == "label" and node.get("for") == html_id:
                return node
        return None

    @classmethod
    def from_capture(cls, data: dict[str, Any]) -> Document:
        viewport = data.get("viewport") or [0, 0]
        return cls(
            root=_build_node(data["root"], None, False),
            url=data.get("url", ""),
            title=data.get("title", ""),
            ready_state=data.get("readyState", "complete"),
            viewport=(viewport[0], viewport[1]),
            scroll_y=data.get("scrollY", 0),
        )


def _deep_find(scope: DomNode, selector: str) -> DomNode | None:
    for node in scope.iter_descendants():
        if node.matches(selector):
            return node
    hosts = [scope] if scope.shadow_nodes is not None else []
    hosts += [n for n in scope.iter_descendants() if n.shadow_nodes is not None]
    for host in hosts:
        for child in host.shadow_children:
            if child.matches(selector):
                return child
            found = _deep_find(child, selector)
            if found is not None:
                return found
    return None


def _deep_collect(node: DomNode, tags: tuple[str, ...], found: list[DomNode]) -> None:
    for child in node.children + node.shadow_children:
        if child.tag in tags:
            found.append(child)
        _deep_collect(child, tags, found)


def _build_node(
    data: dict[str, Any], parent: DomNode | None, in_shadow: bool
) -> DomNode:
    style = data.get("style") or {}
    props = data.get("props") or {}
    node = DomNode(
        node_id=data["id"],
        tag=data["tag"].lower(),
        attrs=data.get("attrs") or {},
        display=style.get("display", "block"),
        visibility=style.get("visibility", "visible"),
        opacity=float(style.get("opacity", 1)),
        rect=Rect.from_list(data.get("rect")),
        value=props.get("value"),
        checked=props.get("checked"),
        selected=props.get("selected"),
        disabled=bool(props.get("disabled", False)),
        parent=parent,
        in_shadow=in_shadow,
    )
    node.child_nodes = _build_children(data.get("children") or [], node, in_shadow)
    if data.get("shadow") is not None:
        node.shadow_nodes = _build_children(data["shadow"], node, True)
    return node


def _build_children(
    items: list[dict[str, Any]], parent: DomNode, in_shadow: bool
) -> list[Union[DomNode, TextNode]]:
    nodes: list[Union[DomNode, TextNode]] = []
    for item in items:
        if "text" in item and "tag" not in item:
            nodes.append(TextNode(item["text"], parent))
        else:
            nodes.append(_build_node(item, parent, in_shadow))
    return nodes
