"""Stable click coordinates for a node.

Animations, lazy layout and smooth scrolling move elements around right after
they become visible; clicking mid-flight misses. :class:`Locator` scrolls the
node into view when needed and waits until its box stops moving.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from pagedriver.config import StabilityConfig
from pagedriver.dom import Rect
from pagedriver.errors import NotFound

logger = logging.getLogger(__name__)


@dataclass
class Box:
    x: int
    y: int
    width: float
    height: float

    def to_dict(self) -> dict[str, Any]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


def in_viewport(rect: Rect, width: float, height: float) -> bool:
    return rect.y >= 0 and rect.x >= 0 and rect.bottom <= height and rect.right <= width


class Locator:
    def __init__(self, dom: Any, config: StabilityConfig | None = None) -> None:
        self.dom = dom
        self.config = config or StabilityConfig()

    async def _rect(self, node_id: int) -> Rect:
        rect = await self.dom.rect(node_id)
        if rect is None:
            raise NotFound(f"Element {node_id} is no longer attached")
        return rect

    async def locate(self, node_id: int) -> Box:
        cfg = self.config
        rect = await self._rect(node_id)

        width, height = await self.dom.viewport()
        if not in_viewport(rect, width, height):
            await self.dom.scroll_into_view(node_id)
            await asyncio.sleep(cfg.settle_ms / 1000)

        deadline = time.monotonic() + cfg.window_ms / 1000
        previous = await self._rect(node_id)
        while time.monotonic() < deadline:
            await asyncio.sleep(cfg.poll_ms / 1000)
            current = await self._rect(node_id)
            if current.close_to(previous, cfg.tolerance_px):
                previous = current
                break
            previous = current
        else:
            logger.debug(f"Element {node_id} still moving after {cfg.window_ms}ms")

        x, y = previous.center()
        return Box(x=x, y=y, width=previous.width, height=previous.height)
