"""The page agent: answers introspection requests for one attached page.

It reads correlated request messages from an :class:`~pagedriver.channel.AgentChannel`,
runs each one concurrently against the page bridge and replies with the same
correlation id. The agent owns the ref map of the latest accessibility
snapshot and the recording state; nothing else about the session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from pagedriver.bridge import PageDom
from pagedriver.channel import AgentChannel
from pagedriver.config import DriverConfig
from pagedriver.content import element_text, extract_main_content, join_texts
from pagedriver.errors import NotFound
from pagedriver.geometry import Locator
from pagedriver.recording import EventSink, RecordingCapture
from pagedriver.selectors import SelectorEngine, capture_selectors
from pagedriver.snapshot import build_snapshot, dom_tree

logger = logging.getLogger(__name__)


class PageAgent:
    """Routes correlated agent requests to the engines for one page.

    Replies that report a missing element carry ``found: False`` and a
    ``reason``; a handler that raises is answered with a ``failure`` message,
    which the channel turns into :class:`~pagedriver.errors.DispatchFailure`.
    """

    def __init__(
        self,
        dom: PageDom,
        channel: AgentChannel,
        config: DriverConfig,
        emit: EventSink,
    ) -> None:
        self.dom = dom
        self.channel = channel
        self.config = config
        self.selectors = SelectorEngine(dom)
        self.locator = Locator(dom, config.stability)
        self.recording = RecordingCapture(dom, emit, config.recording)
        self.refs: dict[int, int] = {}
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self._actions = {
            "ping": self.ping,
            "getCoordinates": self.get_coordinates,
            "getCoordinatesByRef": self.get_coordinates_by_ref,
            "waitForElement": self.wait_for_element,
            "exists": self.exists,
            "extract": self.extract,
            "extractAll": self.extract_all,
            "focus": self.focus,
            "snapshot": self.snapshot,
            "ariaSnapshot": self.aria_snapshot,
            "captureSelectors": self.capture_selectors,
            "recording.start": self.recording_start,
            "recording.stop": self.recording_stop,
            "recording.reattach": self.recording_reattach,
        }

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Begin serving requests from the channel inbox."""
        self._task = asyncio.create_task(self.serve())

    async def close(self) -> None:
        """Cancel the serve loop and in-flight actions, then stop any recording."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
        for task in list(self._inflight):
            task.cancel()
        await self.recording.stop()

    async def serve(self) -> None:
        """Answer each request in its own task so slow waits never block pings."""
        while True:
            message = await self.channel.inbox.get()
            task = asyncio.create_task(self._answer(message))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _answer(self, message: dict[str, Any]) -> None:
        request_id = message.get("id")
        action = message.get("action", "")
        params = {k: v for k, v in message.items() if k not in ("id", "action")}
        handler = self._actions.get(action)
        if handler is None:
            reply = {"responseId": request_id, "failure": f"Unknown action: {action}"}
        else:
            try:
                reply = {"responseId": request_id, **await handler(**params)}
            except Exception as exc:
                logger.warning(f"Agent action {action!r} failed: {exc}")
                reply = {"responseId": request_id, "failure": str(exc)}
        self.channel.deliver(reply)

    # -- actions -------------------------------------------------------------

    def forget_refs(self) -> None:
        """Drop the ref map of the latest snapshot.

        Node ids restart when the bridge is injected into a new document, so a
        ref kept across navigation would point at an unrelated element.
        """
        self.refs = {}

    async def ping(self) -> dict[str, Any]:
        return {"pong": True}

    async def _locate(self, node_id: int) -> dict[str, Any]:
        try:
            box = await self.locator.locate(node_id)
        except NotFound as exc:
            return {"found": False, "reason": str(exc)}
        return {"found": True, **box.to_dict()}

    async def get_coordinates(self, selector: str) -> dict[str, Any]:
        """Resolve *selector* and return the settled centre of its box."""
        node_id = await self.selectors.resolve_id(selector)
        if node_id is None:
            return {"found": False, "reason": f"Element not found: {selector}"}
        return await self._locate(node_id)

    async def get_coordinates_by_ref(self, ref: int | str) -> dict[str, Any]:
        """Like :meth:`get_coordinates` for a ref from the latest snapshot."""
        node_id = self.refs.get(int(ref))
        if node_id is None:
            return {"found": False, "reason": f"Element not found for ref={ref}"}
        return await self._locate(node_id)

    async def _poll(self, selector: str, timeout: int) -> bool:
        deadline = time.monotonic() + timeout / 1000
        interval = self.config.timeouts.poll / 1000
        while True:
            if await self.selectors.resolve_id(selector) is not None:
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(interval)

    async def wait_for_element(self, selector: str, timeout_ms: int = 30000) -> dict[str, Any]:
        """Poll until *selector* resolves or *timeout_ms* elapses."""
        return {"found": await self._poll(selector, timeout_ms)}

    async def exists(self, selector: str, timeout_ms: int = 1000) -> dict[str, Any]:
        return {"exists": await self._poll(selector, timeout_ms)}

    async def extract(self, selector: str) -> dict[str, Any]:
        """Visible text of the first match (a field's value for form controls)."""
        node = await self.selectors.resolve(selector)
        if node is None:
            return {"found": False}
        return {"found": True, "text": element_text(node)}

    async def extract_all(self, selector: str, separator: str = ", ") -> dict[str, Any]:
        """Visible text of every match, joined with *separator*."""
        document = await self.dom.capture()
        nodes = await self.selectors.resolve_all(selector, document)
        if not nodes:
            return {"found": False}
        return {"found": True, "text": join_texts(nodes, separator)}

    async def focus(self, selector: str) -> dict[str, Any]:
        node_id = await self.selectors.resolve_id(selector)
        if node_id is None or not await self.dom.focus(node_id):
            return {"found": False}
        return {"found": True, "focused": selector}

    async def snapshot(self) -> dict[str, Any]:
        document = await self.dom.capture()
        return {"tree": dom_tree(document.body)}

    async def aria_snapshot(self, include_content: bool = False) -> dict[str, Any]:
        """Build the accessibility outline and replace the ref map with its refs."""
        document = await self.dom.capture()
        content = None
        if include_content:
            content = extract_main_content(document, self.config.extraction)
        snap = build_snapshot(document, content)
        self.refs = snap.refs
        return {"snapshot": snap.text, "refCount": snap.ref_count}

    async def capture_selectors(self) -> dict[str, Any]:
        return capture_selectors(await self.dom.capture())

    async def recording_start(self) -> dict[str, Any]:
        await self.recording.start()
        return {"recording": True}

    async def recording_stop(self) -> dict[str, Any]:
        await self.recording.stop()
        return {"recording": False}

    async def recording_reattach(self) -> dict[str, Any]:
        """Re-arm the bridge listeners after the page loaded a new document."""
        await self.recording.reattach()
        return {"recording": self.recording.active}
