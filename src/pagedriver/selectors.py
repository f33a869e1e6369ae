"""Selector resolution and generation.

Resolution turns a caller's selector into one node. Text predicates
(``button:has-text('Save')``, ``div:contains('Total')`` and a bare
``:has-text('Save')``) are handled here, everything else is handed to the
page's native ``querySelectorAll``.

Generation goes the other way: from the facts about an element
(:class:`ElementDescriptor`) to the most stable selector that identifies it.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from pagedriver.dom import Document, DomNode, Rect

logger = logging.getLogger(__name__)

_HAS_TEXT_RE = re.compile(r"""^(.+?):has-text\(['"](.+?)['"]\)$""")
_CONTAINS_RE = re.compile(r"""^(.+?):contains\(['"](.+?)['"]\)$""")
_BARE_HAS_TEXT_RE = re.compile(r"""^:has-text\(['"](.+?)['"]\)$""")
_GENERATED_ID_RE = re.compile(r"^[a-f0-9-]{32,}$", re.IGNORECASE)
_UTILITY_CLASS_RE = re.compile(
    r"^(p-|m-|w-|h-|flex|grid|text-|bg-|border|rounded|shadow|hover:|focus:)"
)
_CSS_IDENT_RE = re.compile(r"[^a-zA-Z0-9_\-\u00a0-\uffff]")

# Same order as the interactive queries a page author would try by hand.
_INTERACTIVE_GROUPS = [
    lambda n: n.tag == "button",
    lambda n: n.tag == "a" and n.has_attr("href"),
    lambda n: n.tag == "input",
    lambda n: n.tag == "textarea",
    lambda n: n.tag == "select",
    lambda n: n.get("role") == "button",
    lambda n: n.get("role") == "link",
    lambda n: n.get("role") == "menuitem",
    lambda n: n.get("role") == "tab",
    lambda n: n.has_attr("onclick"),
]


def css_escape(ident: str) -> str:
    """Minimal ``CSS.escape`` for ids and class names."""
    escaped = _CSS_IDENT_RE.sub(lambda m: "\\" + m.group(0), ident)
    if escaped and escaped[0].isdigit():
        escaped = f"\\3{escaped[0]} {escaped[1:]}"
    return escaped


def parse_text_predicate(selector: str) -> tuple[str, str] | None:
    """Split a text-predicate selector into ``(base, text)``.

    A bare ``:has-text('t')`` gets ``*`` as its base.
    """
    for pattern in (_HAS_TEXT_RE, _CONTAINS_RE):
        m = pattern.match(selector)
        if m:
            return m.group(1), m.group(2)
    m = _BARE_HAS_TEXT_RE.match(selector)
    if m:
        return "*", m.group(1)
    return None


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class SelectorEngine:
    """Resolves selectors against the page behind a :class:`~pagedriver.bridge.PageDom`."""

    def __init__(self, dom: Any) -> None:
        self.dom = dom

    async def resolve(
        self, selector: str, document: Document | None = None
    ) -> DomNode | None:
        """Return the first node *selector* designates, or ``None``."""
        predicate = parse_text_predicate(selector)
        if predicate is not None:
            document = document or await self.dom.capture()
            return await self.find_by_text(document, *predicate)

        ids = await self._query(selector)
        if not ids:
            return None
        document = document or await self.dom.capture()
        return document.get(ids[0])

    async def resolve_id(self, selector: str) -> int | None:
        """Like :meth:`resolve` but without capturing for plain CSS."""
        if parse_text_predicate(selector) is not None:
            node = await self.resolve(selector)
            return node.node_id if node is not None else None
        ids = await self._query(selector)
        return ids[0] if ids else None

    async def resolve_all(self, selector: str, document: Document) -> list[DomNode]:
        ids = await self._query(selector)
        nodes = [document.get(node_id) for node_id in ids or []]
        return [n for n in nodes if n is not None]

    async def find_by_text(
        self, document: Document, base: str, text: str
    ) -> DomNode | None:
        if base == "*":
            candidates = list(document.body.iter_descendants())
        else:
            candidates = await self.resolve_all(base, document)

        needle = text.lower()
        for node in candidates:
            if needle in node.direct_text().strip().lower():
                return node
        for node in candidates:
            if needle in node.text_content().strip().lower():
                return node
        return None

    async def _query(self, selector: str) -> list[int] | None:
        ids = await self.dom.query(selector)
        if ids is None:
            logger.warning(f"Invalid selector: {selector}")
        return ids


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


@dataclass
class ElementDescriptor:
    tag: str
    attrs: dict[str, str | None] = field(default_factory=dict)
    classes: list[str] = field(default_factory=list)
    direct_text: str = ""
    full_text: str = ""
    rect: Rect = field(default_factory=Rect)
    counts: dict[str, int] = field(default_factory=dict)
    path: list[tuple[str, int | None]] = field(default_factory=list)

    @property
    def position(self) -> dict[str, int]:
        x, y = self.rect.center()
        return {"x": x, "y": y}

    @classmethod
    def from_bridge(cls, data: dict[str, Any]) -> ElementDescriptor:
        return cls(
            tag=data["tag"],
            attrs=data.get("attrs") or {},
            classes=data.get("classes") or [],
            direct_text=data.get("directText", ""),
            full_text=data.get("fullText", ""),
            rect=Rect.from_list(data.get("rect")),
            counts=data.get("counts") or {},
            path=[(tag, index) for tag, index in data.get("path") or []],
        )

    @classmethod
    def from_node(cls, node: DomNode, document: Document) -> ElementDescriptor:
        attrs = {
            name: node.get(name)
            for name in (
                "data-testid",
                "data-test",
                "data-cy",
                "id",
                "aria-label",
                "name",
                "type",
                "placeholder",
            )
        }
        classes = [c for c in node.classes if ":" not in c]
        counts = {
            "id": _count_attr(document, "id", attrs["id"]),
            "aria-label": _count_attr(document, "aria-label", attrs["aria-label"]),
            "name": _count_attr(document, "name", attrs["name"]),
            "classes": 0,
        }
        if classes:
            wanted = set(classes[:2])
            counts["classes"] = document.count(
                lambda n: n.tag == node.tag and wanted <= set(n.classes)
            )
        if node.tag in ("input", "textarea"):
            full_text = node.value or ""
        else:
            full_text = node.text_content().strip()
        return cls(
            tag=node.tag,
            attrs=attrs,
            classes=classes,
            direct_text=node.direct_text().strip(),
            full_text=full_text,
            rect=node.rect,
            counts=counts,
            path=_nth_of_type_path(node, document),
        )


def _count_attr(document: Document, name: str, value: str | None) -> int:
    if not value:
        return 0
    return document.count(lambda n: n.get(name) == value)


def _nth_of_type_path(
    node: DomNode, document: Document, max_depth: int = 3
) -> list[tuple[str, int | None]]:
    path: list[tuple[str, int | None]] = []
    current: DomNode | None = node
    body = document.body
    while current is not None and current is not body and len(path) < max_depth:
        parent = current.parent
        index = None
        if parent is not None:
            same = [c for c in parent.children if c.tag == current.tag]
            if len(same) > 1:
                index = same.index(current) + 1
        path.insert(0, (current.tag, index))
        current = parent
    return path


def is_generated_id(value: str) -> bool:
    return value.startswith(":") or bool(_GENERATED_ID_RE.match(value))


def generate_selector(desc: ElementDescriptor) -> str:
    """Pick the most stable selector for the described element."""
    for attr in ("data-testid", "data-test", "data-cy"):
        value = desc.attrs.get(attr)
        if value:
            return f'[{attr}="{value}"]'

    html_id = desc.attrs.get("id")
    if html_id and not is_generated_id(html_id) and desc.counts.get("id") == 1:
        return f"#{css_escape(html_id)}"

    label = desc.attrs.get("aria-label")
    if label and desc.counts.get("aria-label") == 1:
        return f'[aria-label="{label}"]'

    name = desc.attrs.get("name")
    if name and desc.counts.get("name") == 1:
        return f'[name="{name}"]'

    if desc.tag in ("button", "a", "label"):
        text = desc.direct_text.strip()
        if text and len(text) < 50:
            escaped = text.replace("'", "\\'")
            return f"{desc.tag}:has-text('{escaped}')"

    if desc.tag == "input":
        placeholder = desc.attrs.get("placeholder")
        if placeholder:
            input_type = desc.attrs.get("type") or "text"
            return f'input[type="{input_type}"][placeholder="{placeholder}"]'

    if desc.classes and desc.counts.get("classes") == 1:
        return desc.tag + "." + ".".join(css_escape(c) for c in desc.classes[:2])

    return " > ".join(
        f"{tag}:nth-of-type({index})" if index else tag for tag, index in desc.path
    )


# ---------------------------------------------------------------------------
# Selector capture
# ---------------------------------------------------------------------------


def _interactive_info(node: DomNode, document: Document) -> dict[str, Any] | None:
    info = {
        "tag": node.tag,
        "type": node.get("type"),
        "text": node.direct_text().strip()[:50] or None,
        "placeholder": node.get("placeholder"),
        "ariaLabel": node.get("aria-label"),
        "testId": node.get("data-testid"),
        "name": node.get("name"),
    }
    if not any(info[k] for k in ("text", "placeholder", "ariaLabel", "testId", "name")):
        return None
    info["selector"] = generate_selector(ElementDescriptor.from_node(node, document))
    return info


def capture_selectors(document: Document) -> dict[str, Any]:
    """Summarize the selectors a page offers, for authoring workflows."""
    elements = list(document.iter_elements())

    test_ids = Counter(n.get("data-testid") for n in elements if n.has_attr("data-testid"))
    labels = Counter(
        n.get("aria-label")
        for n in elements
        if n.get("aria-label") and len(n.get("aria-label")) < 100
    )
    roles = Counter(n.get("role") for n in elements if n.has_attr("role"))

    class_counts: Counter[str] = Counter()
    for node in elements:
        for cls in node.classes:
            if len(cls) <= 3 or _UTILITY_CLASS_RE.match(cls):
                continue
            if "-" in cls or "_" in cls or len(cls) > 10:
                class_counts[cls] += 1

    interactive: list[dict[str, Any]] = []
    seen: set[str] = set()
    for matches in _INTERACTIVE_GROUPS:
        for node in elements:
            if len(interactive) >= 100:
                break
            if not matches(node) or node.is_computed_hidden():
                continue
            info = _interactive_info(node, document)
            if info is None or info["selector"] in seen:
                continue
            seen.add(info["selector"])
            interactive.append(info)

    forms: list[dict[str, Any]] = []
    for form in (n for n in elements if n.tag == "form"):
        fields = [
            {
                "tag": field_node.tag,
                "type": field_node.get("type"),
                "name": field_node.get("name"),
                "placeholder": field_node.get("placeholder"),
                "selector": generate_selector(
                    ElementDescriptor.from_node(field_node, document)
                ),
            }
            for field_node in form.find_all("input", "textarea", "select")
        ]
        if fields:
            forms.append(
                {
                    "id": form.get("id"),
                    "name": form.get("name"),
                    "action": form.get("action"),
                    "fields": fields,
                }
            )

    return {
        "url": document.url,
        "title": document.title,
        "selectors": {
            "by_data_testid": [
                {"selector": f'[data-testid="{v}"]', "count": c} for v, c in test_ids.items()
            ],
            "by_aria_label": [
                {"selector": f'[aria-label="{v}"]', "count": c} for v, c in labels.items()
            ],
            "by_role": [{"selector": f'[role="{v}"]', "count": c} for v, c in roles.items()],
            "by_class": [
                {"selector": f".{css_escape(cls)}", "count": c}
                for cls, c in class_counts.most_common(50)
            ],
        },
        "interactive": interactive,
        "forms": forms,
    }
