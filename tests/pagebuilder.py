"""Hand-built page captures and a fake page bridge for engine tests.

``el("button", "Save", data_testid="save")`` builds one node in the capture
format the bridge produces; ``page(...)`` wraps nodes in ``html > body`` and
numbers them in document order.
"""

from __future__ import annotations

from typing import Any

from pagedriver.dom import _SIMPLE_SELECTOR_RE, Document, Rect

DEFAULT_RECT = [10, 10, 100, 20]


def el(
    tag: str,
    *children: dict | str,
    style: dict | None = None,
    rect: list[float] | None = None,
    props: dict | None = None,
    shadow: list[dict | str] | None = None,
    **attrs: str,
) -> dict[str, Any]:
    node: dict[str, Any] = {
        "tag": tag,
        "attrs": {
            k.rstrip("_").replace("_", "-"): v for k, v in attrs.items()
        },
        "style": style or {},
        "rect": rect if rect is not None else list(DEFAULT_RECT),
        "props": props or {},
        "children": [{"text": c} if isinstance(c, str) else c for c in children],
    }
    if shadow is not None:
        node["shadow"] = [{"text": c} if isinstance(c, str) else c for c in shadow]
    return node


def _number(node: dict[str, Any], counter: list[int]) -> None:
    if "tag" not in node:
        return
    counter[0] += 1
    node["id"] = counter[0]
    for child in node.get("children", []) + node.get("shadow", []):
        _number(child, counter)


def page(
    *body_children: dict | str,
    url: str = "https://example.com/",
    title: str = "Example",
    viewport: tuple[int, int] = (1280, 800),
    scroll_y: float = 0,
) -> dict[str, Any]:
    root = el("html", el("body", *body_children, rect=[0, 0, 1280, 800]), rect=[0, 0, 1280, 800])
    _number(root, [0])
    return {
        "url": url,
        "title": title,
        "readyState": "complete",
        "viewport": list(viewport),
        "scrollY": scroll_y,
        "root": root,
    }


def document(*body_children: dict | str, **kwargs: Any) -> Document:
    return Document.from_capture(page(*body_children, **kwargs))


def words(n: int, word: str = "lorem") -> str:
    return " ".join([word] * n)


class FakePageDom:
    """In-memory stand-in for :class:`pagedriver.bridge.PageDom`.

    ``query`` matches the simple selectors :meth:`DomNode.matches` understands
    and returns ``None`` for anything else, like an invalid selector would.
    ``rect_sequences`` replays successive boxes for a node to simulate movement.
    """

    def __init__(self, doc: Document, viewport: tuple[int, int] = (1280, 800)) -> None:
        self.document = doc
        self.viewport_size = viewport
        self.rect_sequences: dict[int, list[Rect]] = {}
        self.detached: set[int] = set()
        self.scrolled: list[int] = []
        self.focused: list[int] = []
        self.queries: list[str] = []
        self.captures = 0
        self.injected = False
        self.present = True
        self.recording = False
        self.queued: list[dict[str, Any]] = []
        self.scroll_y = 0.0

    async def ping(self) -> bool:
        return self.present

    async def inject(self) -> None:
        self.injected = True
        self.present = True

    async def capture(self) -> Document:
        self.captures += 1
        return self.document

    async def query(self, selector: str) -> list[int] | None:
        self.queries.append(selector)
        parts = [p.strip() for p in selector.split(",")]
        if not all(p and _SIMPLE_SELECTOR_RE.match(p) for p in parts):
            return None
        return [
            n.node_id
            for n in self.document.iter_elements()
            if n.node_id not in self.detached and n.matches(selector)
        ]

    async def ready_state(self) -> str:
        return self.document.ready_state

    async def rect(self, node_id: int) -> Rect | None:
        if node_id in self.detached:
            return None
        sequence = self.rect_sequences.get(node_id)
        if sequence:
            return sequence.pop(0) if len(sequence) > 1 else sequence[0]
        node = self.document.get(node_id)
        return node.rect if node is not None else None

    async def viewport(self) -> tuple[int, int]:
        return self.viewport_size

    async def scroll_into_view(self, node_id: int) -> bool:
        self.scrolled.append(node_id)
        return True

    async def focus(self, node_id: int) -> bool:
        self.focused.append(node_id)
        return True

    async def start_recording(self) -> float:
        self.recording = True
        return self.scroll_y

    def _drain(self) -> dict[str, Any]:
        events, self.queued = self.queued, []
        return {"events": events, "scrollY": self.scroll_y}

    async def stop_recording(self) -> dict[str, Any]:
        self.recording = False
        return self._drain()

    async def drain_events(self) -> dict[str, Any]:
        return self._drain()


def described(tag: str, **fields: Any) -> dict[str, Any]:
    """A bridge ``describe()`` payload."""
    return {
        "tag": tag,
        "attrs": fields.pop("attrs", {}),
        "classes": fields.pop("classes", []),
        "directText": fields.pop("direct_text", ""),
        "fullText": fields.pop("full_text", ""),
        "rect": fields.pop("rect", [0, 0, 100, 40]),
        "counts": fields.pop("counts", {}),
        "path": fields.pop("path", [[tag, None]]),
    }
