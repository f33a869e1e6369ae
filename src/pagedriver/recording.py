"""Turns raw page interactions into a normalized recording event stream.

The bridge queues raw click/input/change/scroll notifications in the page;
:class:`RecordingCapture` pumps that queue and emits:

* ``click``   - selector, direct text, tag and viewport position
* ``extract`` - Alt+click; full text (or field value) instead of a click
* ``input``   - one per change event, carrying the final value
* ``scroll``  - coalesced after a quiet period, only above a threshold
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pagedriver.config import RecordingConfig
from pagedriver.dom import js_round
from pagedriver.selectors import ElementDescriptor, generate_selector

logger = logging.getLogger(__name__)

EventSink = Callable[[dict[str, Any]], None]


class RecordingCapture:
    def __init__(
        self, dom: Any, emit: EventSink, config: RecordingConfig | None = None
    ) -> None:
        self.dom = dom
        self.emit = emit
        self.config = config or RecordingConfig()
        self.active = False
        self._pending_inputs: dict[int, str] = {}
        self._scroll_timer: asyncio.TimerHandle | None = None
        self._last_scroll_y = 0.0
        self._scroll_y = 0.0
        self._lock = asyncio.Lock()
        self._pump_task: asyncio.Task | None = None

    async def start(self) -> None:
        if self.active:
            return
        self._last_scroll_y = self._scroll_y = await self.dom.start_recording()
        self.active = True
        self._pump_task = asyncio.create_task(self._pump())
        logger.info("Recording started")

    async def reattach(self) -> None:
        """Reinstall page listeners after the page navigated."""
        if not self.active:
            return
        self._last_scroll_y = self._scroll_y = await self.dom.start_recording()

    async def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        async with self._lock:
            if self._pump_task is not None:
                self._pump_task.cancel()
                self._pump_task = None
            try:
                self.process(await self.dom.stop_recording())
            except Exception as exc:
                logger.warning(f"Could not collect final recording events: {exc}")

        if self._scroll_timer is not None:
            self._scroll_timer.cancel()
            self._scroll_timer = None
            self._emit_scroll()
        self._pending_inputs.clear()
        logger.info("Recording stopped")

    async def _pump(self) -> None:
        interval = self.config.pump_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            async with self._lock:
                try:
                    batch = await self.dom.drain_events()
                except Exception as exc:
                    # Page is navigating; the dispatcher reattaches after load.
                    logger.debug(f"Recording drain failed: {exc}")
                    continue
                self.process(batch)

    # -- raw event handling --------------------------------------------------

    def process(self, batch: dict[str, Any]) -> None:
        for raw in batch.get("events", []):
            self.handle(raw)
        if "scrollY" in batch:
            self._scroll_y = batch["scrollY"]

    def handle(self, raw: dict[str, Any]) -> None:
        kind = raw.get("type")
        if kind == "click":
            self._on_click(raw)
        elif kind == "input":
            self._pending_inputs[raw["key"]] = raw.get("value") or ""
        elif kind == "change":
            self._pending_inputs.pop(raw["key"], None)
            desc = ElementDescriptor.from_bridge(raw["element"])
            self.emit(
                {
                    "event": "input",
                    "selector": generate_selector(desc),
                    "value": raw.get("value") or "",
                    "tag": desc.tag,
                }
            )
        elif kind == "scroll":
            self._scroll_y = raw.get("scrollY", self._scroll_y)
            self._schedule_scroll()
        else:
            logger.debug(f"Ignoring raw recording event {kind!r}")

    def _on_click(self, raw: dict[str, Any]) -> None:
        desc = ElementDescriptor.from_bridge(raw["element"])
        event = {
            "event": "extract" if raw.get("alt") else "click",
            "selector": generate_selector(desc),
            "text": desc.full_text[:500] if raw.get("alt") else desc.direct_text[:50],
            "tag": desc.tag,
            "position": desc.position,
        }
        self.emit(event)

    # -- scroll coalescing ---------------------------------------------------

    def _schedule_scroll(self) -> None:
        if self._scroll_timer is not None:
            self._scroll_timer.cancel()
        loop = asyncio.get_running_loop()
        self._scroll_timer = loop.call_later(
            self.config.scroll_quiet_ms / 1000, self._on_scroll_quiet
        )

    def _on_scroll_quiet(self) -> None:
        self._scroll_timer = None
        if not self._emit_scroll():
            self._last_scroll_y = self._scroll_y

    def _emit_scroll(self) -> bool:
        delta = self._scroll_y - self._last_scroll_y
        if abs(delta) < self.config.scroll_threshold_px:
            return False
        self.emit(
            {
                "event": "scroll",
                "direction": "down" if delta > 0 else "up",
                "amount": abs(js_round(delta)),
            }
        )
        self._last_scroll_y = self._scroll_y
        return True
