"""Accessibility snapshot of a captured page.

The snapshot is a YAML-like outline of the semantically meaningful elements,
each tagged with a numeric ``[ref=N]`` that later ``clickRef``/``typeRef``
commands use to target it::

    - Page URL: https://example.com/login
    - Page Title: Sign in
    - Page Snapshot
    ```yaml
    - form
      - textbox "Email" [ref=2]
      - button "Continue" [ref=3]
    ```

Refs restart at 1 on every snapshot and the previous ref map is discarded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from pagedriver.dom import Document, DomNode

# [ref=12]
_REF_RE = re.compile(r"\[ref=(\d+)\]")

SKIP_TAGS = frozenset(
    {"script", "style", "noscript", "svg", "path", "template", "head", "meta", "link"}
)
INTERACTIVE_TAGS = frozenset(
    {"a", "button", "input", "select", "textarea", "details", "summary"}
)
INTERACTIVE_ROLES = frozenset(
    {
        "button",
        "link",
        "checkbox",
        "radio",
        "textbox",
        "combobox",
        "listbox",
        "menuitem",
        "tab",
        "switch",
    }
)
NAMED_BY_TEXT_TAGS = frozenset({"button", "a", "label", "legend", "caption", "summary"})
HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})

ROLE_MAP = {
    "button": "button",
    "select": "combobox",
    "textarea": "textbox",
    "img": "img",
    "nav": "navigation",
    "main": "main",
    "header": "banner",
    "footer": "contentinfo",
    "aside": "complementary",
    "article": "article",
    "section": "region",
    "form": "form",
    "table": "table",
    "thead": "rowgroup",
    "tbody": "rowgroup",
    "tr": "row",
    "th": "columnheader",
    "td": "cell",
    "ul": "list",
    "ol": "list",
    "li": "listitem",
    "dialog": "dialog",
    "menu": "menu",
    **{tag: "heading" for tag in HEADING_TAGS},
}

INPUT_ROLE_MAP = {
    "button": "button",
    "submit": "button",
    "reset": "button",
    "checkbox": "checkbox",
    "radio": "radio",
    "text": "textbox",
    "email": "textbox",
    "password": "textbox",
    "search": "searchbox",
    "tel": "textbox",
    "url": "textbox",
    "number": "spinbutton",
    "range": "slider",
}


@dataclass
class AccessibilityNode:
    role: str
    name: str | None = None
    interactive: bool = False
    checked: bool | None = None
    disabled: bool = False
    expanded: bool | None = None
    selected: bool = False
    value: str | None = None
    ref: int = 0
    children: list[AccessibilityNode] = field(default_factory=list)

    def to_line(self, indent: int) -> str:
        line = f"{'  ' * indent}- {self.role}"
        if self.name:
            line += f' "{self.name}"'
        if self.interactive or self.name:
            line += f" [ref={self.ref}]"
        if self.checked is not None:
            line += " [checked]" if self.checked else " [unchecked]"
        if self.disabled:
            line += " [disabled]"
        if self.expanded is not None:
            line += " [expanded]" if self.expanded else " [collapsed]"
        if self.selected:
            line += " [selected]"
        if self.value:
            line += f': "{self.value}"'
        return line


@dataclass
class AriaSnapshot:
    tree: list[AccessibilityNode]
    text: str
    refs: dict[int, int]

    @property
    def ref_count(self) -> int:
        return len(self.refs)


# ---------------------------------------------------------------------------
# Element semantics
# ---------------------------------------------------------------------------


def infer_role(node: DomNode) -> str | None:
    if node.tag == "a":
        return "link" if node.has_attr("href") else None
    if node.tag == "input":
        return INPUT_ROLE_MAP.get(node.input_type, "textbox")
    return ROLE_MAP.get(node.tag)


def accessible_name(node: DomNode, document: Document) -> str | None:
    """First non-empty of the usual naming sources."""
    label = (node.get("aria-label") or "").strip()
    if label:
        return label

    labelled_by = node.get("aria-labelledby")
    if labelled_by:
        texts = []
        for html_id in labelled_by.split():
            target = document.element_by_id(html_id)
            text = target.text_content().strip() if target is not None else ""
            if text:
                texts.append(text)
        if texts:
            return " ".join(texts)

    html_id = node.get("id")
    if html_id:
        label_node = document.label_for(html_id)
        if label_node is not None:
            text = label_node.text_content().strip()
            if text:
                return text

    if node.tag in NAMED_BY_TEXT_TAGS:
        text = node.direct_text().strip()
        if text:
            return text[:80]

    for attr in ("title", "placeholder"):
        value = (node.get(attr) or "").strip()
        if value:
            return value

    if node.tag == "img":
        alt = (node.get("alt") or "").strip()
        if alt:
            return alt

    if node.tag in HEADING_TAGS:
        return node.text_content().strip()[:80] or None

    return None


def is_interactive(node: DomNode, role: str | None) -> bool:
    return (
        node.tag in INTERACTIVE_TAGS
        or role in INTERACTIVE_ROLES
        or node.has_attr("onclick")
        or node.has_attr("tabindex")
        or node.get("contenteditable") == "true"
    )


def describe(node: DomNode, document: Document) -> AccessibilityNode | None:
    """Accessibility info for *node*, or ``None`` for a plain wrapper."""
    role = node.get("role") or infer_role(node)
    name = accessible_name(node, document)
    interactive = is_interactive(node, role)
    if not (role or name or interactive):
        return None

    info = AccessibilityNode(role=role or node.tag, name=name, interactive=interactive)
    if node.tag in ("input", "textarea", "select"):
        input_type = node.input_type if node.tag == "input" else None
        if input_type in ("checkbox", "radio"):
            info.checked = bool(node.checked)
        elif node.value and input_type != "password":
            info.value = node.value[:50]

    info.disabled = node.disabled or node.get("aria-disabled") == "true"
    info.selected = node.get("aria-selected") == "true" or bool(node.selected)
    expanded = node.get("aria-expanded")
    if expanded is not None:
        info.expanded = expanded == "true"
    return info


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class SnapshotBuilder:
    def __init__(self, document: Document) -> None:
        self.document = document
        self.refs: dict[int, int] = {}
        self.lines: list[str] = []

    def build(self) -> list[AccessibilityNode]:
        roots: list[AccessibilityNode] = []
        self._walk(self.document.body, 0, roots)
        return roots

    def _walk(self, node: DomNode, indent: int, out: list[AccessibilityNode]) -> None:
        if node.is_computed_hidden() or node.tag in SKIP_TAGS:
            return

        info = describe(node, self.document)
        if info is None:
            for child in node.children:
                self._walk(child, indent, out)
            return

        info.ref = len(self.refs) + 1
        self.refs[info.ref] = node.node_id
        self.lines.append(info.to_line(indent))
        out.append(info)
        for child in node.children:
            self._walk(child, indent + 1, info.children)


def build_snapshot(document: Document, content: str | None = None) -> AriaSnapshot:
    """Build the snapshot text; *content* is embedded as a markdown block when given."""
    builder = SnapshotBuilder(document)
    tree = builder.build()

    lines = [f"- Page URL: {document.url}", f"- Page Title: {document.title}"]
    if content is not None:
        lines += ["- Page Content", "```markdown", content, "```"]
    lines += ["- Page Snapshot", "```yaml", *builder.lines, "```"]
    return AriaSnapshot(tree=tree, text="\n".join(lines), refs=builder.refs)


def parse_refs(snapshot_text: str) -> list[int]:
    """Ref numbers in the order they appear in *snapshot_text*."""
    return [int(m.group(1)) for m in _REF_RE.finditer(snapshot_text)]


# ---------------------------------------------------------------------------
# Plain DOM tree
# ---------------------------------------------------------------------------

_TREE_SKIP_TAGS = frozenset({"script", "style", "noscript", "svg", "path"})


def dom_tree(node: DomNode, max_depth: int = 5, depth: int = 0) -> dict[str, Any] | None:
    """Depth-limited outline of visible elements with their identifying attributes."""
    if depth >= max_depth:
        return None
    if node.is_computed_hidden() or node.tag in _TREE_SKIP_TAGS:
        return None

    out: dict[str, Any] = {"tag": node.tag, "text": node.direct_text().strip()[:100]}
    if node.get("id"):
        out["id"] = node.get("id")
    if node.get("class"):
        out["class"] = node.get("class")[:100]
    for attr, key in (
        ("aria-label", "ariaLabel"),
        ("data-testid", "testId"),
        ("name", "name"),
        ("type", "type"),
        ("href", "href"),
    ):
        if node.get(attr):
            out[key] = node.get(attr)

    children = [c for c in (dom_tree(child, max_depth, depth + 1) for child in node.children) if c]
    if children:
        out["children"] = children
    return out
