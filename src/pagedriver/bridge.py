"""Content-side half of the page agent.

``BRIDGE_SCRIPT`` installs ``window.__pagedriver`` into the page. It only
exposes primitives (capture, structural query, geometry, scrolling, focus and
a raw recording-event queue); all decisions are made in Python over the
captured :class:`~pagedriver.dom.Document`.

Patchright evaluates in an isolated world, so the bridge is invisible to page
scripts while still sharing the DOM.
"""

from __future__ import annotations

import logging
from typing import Any

from pagedriver.dom import Document, Rect

logger = logging.getLogger(__name__)

BRIDGE_SCRIPT = r"""
(() => {
  if (window.__pagedriver) return true;

  const ids = new WeakMap();
  const refs = new Map();
  let nextId = 1;

  const idOf = (el) => {
    let id = ids.get(el);
    if (id === undefined) {
      id = nextId++;
      ids.set(el, id);
      refs.set(id, new WeakRef(el));
    }
    return id;
  };

  const get = (id) => {
    const ref = refs.get(id);
    const el = ref ? ref.deref() : undefined;
    return el && el.isConnected ? el : null;
  };

  const rectOf = (el) => {
    const r = el.getBoundingClientRect();
    return [r.x, r.y, r.width, r.height];
  };

  const serializeChildren = (nodes) => {
    const out = [];
    for (const child of nodes) {
      if (child.nodeType === Node.TEXT_NODE) out.push({ text: child.textContent });
      else if (child.nodeType === Node.ELEMENT_NODE) out.push(serialize(child));
    }
    return out;
  };

  const serialize = (el) => {
    const style = getComputedStyle(el);
    const attrs = {};
    for (const a of el.attributes) attrs[a.name] = a.value;
    const props = {};
    const tag = el.tagName.toLowerCase();
    if (tag === "input" || tag === "textarea" || tag === "select") props.value = el.value;
    if (tag === "input") props.checked = el.checked;
    if (tag === "option") props.selected = el.selected;
    if ("disabled" in el) props.disabled = !!el.disabled;
    const node = {
      id: idOf(el),
      tag,
      attrs,
      style: { display: style.display, visibility: style.visibility, opacity: style.opacity },
      rect: rectOf(el),
      props,
      children: serializeChildren(el.childNodes),
    };
    if (el.shadowRoot) node.shadow = serializeChildren(el.shadowRoot.childNodes);
    return node;
  };

  const directText = (el) => {
    let text = "";
    for (const child of el.childNodes) {
      if (child.nodeType === Node.TEXT_NODE) text += child.textContent;
    }
    return text.trim();
  };

  const count = (selector) => {
    try {
      return document.querySelectorAll(selector).length;
    } catch (e) {
      return 0;
    }
  };

  // Facts needed to build a stable selector for a live element.
  const describe = (el) => {
    const tag = el.tagName.toLowerCase();
    const classes = typeof el.className === "string"
      ? el.className.split(/\s+/).filter((c) => c.length > 0 && !c.includes(":"))
      : [];
    const path = [];
    let current = el;
    while (current && current !== document.body && path.length < 3) {
      const parent = current.parentElement;
      let index = null;
      if (parent) {
        const same = Array.from(parent.children).filter((c) => c.tagName === current.tagName);
        if (same.length > 1) index = same.indexOf(current) + 1;
      }
      path.unshift([current.tagName.toLowerCase(), index]);
      current = parent;
    }
    const label = el.getAttribute("aria-label");
    const name = el.getAttribute("name");
    const isField = tag === "input" || tag === "textarea";
    return {
      tag,
      attrs: {
        "data-testid": el.getAttribute("data-testid"),
        "data-test": el.getAttribute("data-test"),
        "data-cy": el.getAttribute("data-cy"),
        id: el.id || null,
        "aria-label": label,
        name,
        type: el.getAttribute("type"),
        placeholder: el.getAttribute("placeholder"),
      },
      classes,
      directText: directText(el),
      fullText: isField ? (el.value || "") : (el.textContent || "").trim(),
      rect: rectOf(el),
      counts: {
        id: el.id ? count("#" + CSS.escape(el.id)) : 0,
        "aria-label": label ? count(`[aria-label="${label}"]`) : 0,
        name: name ? count(`[name="${name}"]`) : 0,
        classes: classes.length
          ? count(tag + "." + classes.slice(0, 2).map((c) => CSS.escape(c)).join("."))
          : 0,
      },
      path,
    };
  };

  const recording = { active: false, queue: [] };

  const onClick = (e) => {
    const el = e.target;
    if (!(el instanceof Element)) return;
    if (e.altKey) {
      e.preventDefault();
      e.stopPropagation();
    }
    recording.queue.push({ type: "click", alt: e.altKey, element: describe(el) });
  };
  const onInput = (e) => {
    const el = e.target;
    if (!(el instanceof Element)) return;
    recording.queue.push({ type: "input", key: idOf(el), value: el.value });
  };
  const onChange = (e) => {
    const el = e.target;
    if (!(el instanceof Element)) return;
    recording.queue.push({
      type: "change", key: idOf(el), value: el.value, element: describe(el),
    });
  };
  const onScroll = () => {
    recording.queue.push({ type: "scroll", scrollY: window.scrollY });
  };

  window.__pagedriver = {
    capture() {
      return {
        url: location.href,
        title: document.title,
        readyState: document.readyState,
        viewport: [window.innerWidth, window.innerHeight],
        scrollY: window.scrollY,
        root: serialize(document.documentElement),
      };
    },
    query(selector) {
      try {
        return Array.from(document.querySelectorAll(selector)).map(idOf);
      } catch (e) {
        return null;
      }
    },
    rect(id) {
      const el = get(id);
      return el ? rectOf(el) : null;
    },
    viewport() {
      return [window.innerWidth, window.innerHeight];
    },
    scrollIntoView(id) {
      const el = get(id);
      if (!el) return false;
      el.scrollIntoView({ behavior: "instant", block: "center", inline: "center" });
      return true;
    },
    focus(id) {
      const el = get(id);
      if (!el) return false;
      el.focus();
      return true;
    },
    readyState() {
      return document.readyState;
    },
    startRecording() {
      if (recording.active) return window.scrollY;
      recording.active = true;
      document.addEventListener("click", onClick, true);
      document.addEventListener("input", onInput, true);
      document.addEventListener("change", onChange, true);
      window.addEventListener("scroll", onScroll, true);
      return window.scrollY;
    },
    stopRecording() {
      if (recording.active) {
        recording.active = false;
        document.removeEventListener("click", onClick, true);
        document.removeEventListener("input", onInput, true);
        document.removeEventListener("change", onChange, true);
        window.removeEventListener("scroll", onScroll, true);
      }
      return { events: recording.queue.splice(0), scrollY: window.scrollY };
    },
    drainEvents() {
      return { events: recording.queue.splice(0), scrollY: window.scrollY };
    },
  };
  return true;
})()
"""


class PageDom:
    """Thin async wrapper over the bridge installed in one Patchright page."""

    def __init__(self, page: Any) -> None:
        self.page = page

    async def _call(self, method: str, *args: Any) -> Any:
        if args:
            return await self.page.evaluate(
                f"(args) => window.__pagedriver.{method}(...args)", list(args)
            )
        return await self.page.evaluate(f"() => window.__pagedriver.{method}()")

    # -- presence ------------------------------------------------------------

    async def ping(self) -> bool:
        try:
            return bool(await self.page.evaluate("() => !!window.__pagedriver"))
        except Exception as exc:
            logger.debug(f"Bridge ping failed: {exc}")
            return False

    async def inject(self) -> None:
        await self.page.evaluate(BRIDGE_SCRIPT)

    # -- capture & query -----------------------------------------------------

    async def capture(self) -> Document:
        return Document.from_capture(await self._call("capture"))

    async def query(self, selector: str) -> list[int] | None:
        """Node ids matching *selector*, or ``None`` when it does not parse."""
        return await self._call("query", selector)

    async def ready_state(self) -> str:
        return await self._call("readyState")

    # -- geometry ------------------------------------------------------------

    async def rect(self, node_id: int) -> Rect | None:
        values = await self._call("rect", node_id)
        return Rect.from_list(values) if values is not None else None

    async def viewport(self) -> tuple[int, int]:
        width, height = await self._call("viewport")
        return width, height

    async def scroll_into_view(self, node_id: int) -> bool:
        return await self._call("scrollIntoView", node_id)

    async def focus(self, node_id: int) -> bool:
        return await self._call("focus", node_id)

    # -- recording -----------------------------------------------------------

    async def start_recording(self) -> float:
        return await self._call("startRecording")

    async def stop_recording(self) -> dict[str, Any]:
        return await self._call("stopRecording")

    async def drain_events(self) -> dict[str, Any]:
        return await self._call("drainEvents")
