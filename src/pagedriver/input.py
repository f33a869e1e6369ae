"""Trusted input through the Chrome DevTools Protocol.

Events dispatched through ``Input.*`` are indistinguishable from real user
input, unlike synthetic DOM events fired from page script.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

MODIFIER_FLAGS = {
    "Alt": 1,
    "Control": 2,
    "Ctrl": 2,
    "Meta": 4,
    "Cmd": 4,
    "Command": 4,
    "Shift": 8,
}

_MODIFIER_KEY = {"location": 1}

KEY_MAP: dict[str, dict[str, Any]] = {
    "Alt": {"key": "Alt", "code": "AltLeft", "keyCode": 18, **_MODIFIER_KEY},
    "Control": {"key": "Control", "code": "ControlLeft", "keyCode": 17, **_MODIFIER_KEY},
    "Ctrl": {"key": "Control", "code": "ControlLeft", "keyCode": 17, **_MODIFIER_KEY},
    "Meta": {"key": "Meta", "code": "MetaLeft", "keyCode": 91, **_MODIFIER_KEY},
    "Cmd": {"key": "Meta", "code": "MetaLeft", "keyCode": 91, **_MODIFIER_KEY},
    "Command": {"key": "Meta", "code": "MetaLeft", "keyCode": 91, **_MODIFIER_KEY},
    "Shift": {"key": "Shift", "code": "ShiftLeft", "keyCode": 16, **_MODIFIER_KEY},
    "Enter": {"key": "Enter", "code": "Enter", "keyCode": 13, "text": "\r"},
    "Escape": {"key": "Escape", "code": "Escape", "keyCode": 27},
    "Tab": {"key": "Tab", "code": "Tab", "keyCode": 9},
    "Backspace": {"key": "Backspace", "code": "Backspace", "keyCode": 8},
    "Delete": {"key": "Delete", "code": "Delete", "keyCode": 46},
    "ArrowUp": {"key": "ArrowUp", "code": "ArrowUp", "keyCode": 38},
    "ArrowDown": {"key": "ArrowDown", "code": "ArrowDown", "keyCode": 40},
    "ArrowLeft": {"key": "ArrowLeft", "code": "ArrowLeft", "keyCode": 37},
    "ArrowRight": {"key": "ArrowRight", "code": "ArrowRight", "keyCode": 39},
    "Space": {"key": " ", "code": "Space", "keyCode": 32, "text": " "},
    "Home": {"key": "Home", "code": "Home", "keyCode": 36},
    "End": {"key": "End", "code": "End", "keyCode": 35},
    "PageUp": {"key": "PageUp", "code": "PageUp", "keyCode": 33},
    "PageDown": {"key": "PageDown", "code": "PageDown", "keyCode": 34},
    **{f"F{n}": {"key": f"F{n}", "code": f"F{n}", "keyCode": 111 + n} for n in range(1, 13)},
}


def key_info(name: str) -> dict[str, Any]:
    """CDP key description for a key name; single characters map to ``Key<X>``."""
    if name in KEY_MAP:
        return KEY_MAP[name]
    if len(name) == 1:
        return {
            "key": name,
            "code": f"Key{name.upper()}",
            "keyCode": ord(name.upper()),
            "text": name,
        }
    return {"key": name, "code": name, "keyCode": 0}


class InputSimulator(Protocol):
    async def mouse_move(self, x: float, y: float) -> None: ...

    async def click(self, x: float, y: float) -> None: ...

    async def wheel(self, x: float, y: float, delta_x: float, delta_y: float) -> None: ...

    async def select_all(self) -> None: ...

    async def insert_text(self, text: str) -> None: ...

    async def press_enter(self) -> None: ...

    async def press_key(self, combo: str) -> None: ...

    async def viewport_center(self) -> tuple[float, float]: ...

    async def screenshot(self) -> str: ...


class CDPInputSimulator:
    """:class:`InputSimulator` over a Patchright ``CDPSession``."""

    def __init__(self, cdp: Any) -> None:
        self.cdp = cdp

    async def send(self, method: str, params: dict[str, Any] | None = None) -> Any:
        return await self.cdp.send(method, params or {})

    async def mouse_move(self, x: float, y: float) -> None:
        await self.send("Input.dispatchMouseEvent", {"type": "mouseMoved", "x": x, "y": y})

    async def click(self, x: float, y: float) -> None:
        await self.mouse_move(x, y)
        for event_type in ("mousePressed", "mouseReleased"):
            await self.send(
                "Input.dispatchMouseEvent",
                {"type": event_type, "x": x, "y": y, "button": "left", "clickCount": 1},
            )

    async def wheel(self, x: float, y: float, delta_x: float, delta_y: float) -> None:
        await self.send(
            "Input.dispatchMouseEvent",
            {"type": "mouseWheel", "x": x, "y": y, "deltaX": delta_x, "deltaY": delta_y},
        )

    async def select_all(self) -> None:
        for event_type in ("keyDown", "keyUp"):
            await self.send(
                "Input.dispatchKeyEvent",
                {"type": event_type, "key": "a", "code": "KeyA", "modifiers": 2},
            )

    async def insert_text(self, text: str) -> None:
        await self.send("Input.insertText", {"text": text})

    async def press_enter(self) -> None:
        for event_type in ("keyDown", "keyUp"):
            await self.send(
                "Input.dispatchKeyEvent", {"type": event_type, "key": "Enter", "code": "Enter"}
            )

    async def press_key(self, combo: str) -> None:
        """Press a key or combination such as ``Ctrl+A`` or ``Shift+Enter``.

        Keys go down in the order given and come back up in reverse, with the
        modifier mask tracking which modifiers are held.
        """
        keys = [k.strip() for k in combo.split("+")]
        modifiers = 0
        for name in keys:
            info = key_info(name)
            modifiers |= MODIFIER_FLAGS.get(name, 0)
            params = {
                "type": "keyDown" if info.get("text") else "rawKeyDown",
                "modifiers": modifiers,
                "key": info["key"],
                "code": info["code"],
                "windowsVirtualKeyCode": info["keyCode"],
                "nativeVirtualKeyCode": info["keyCode"],
                "location": info.get("location", 0),
            }
            if info.get("text"):
                params["text"] = params["unmodifiedText"] = info["text"]
            await self.send("Input.dispatchKeyEvent", params)

        for name in reversed(keys):
            info = key_info(name)
            modifiers &= ~MODIFIER_FLAGS.get(name, 0)
            await self.send(
                "Input.dispatchKeyEvent",
                {
                    "type": "keyUp",
                    "modifiers": modifiers,
                    "key": info["key"],
                    "code": info["code"],
                    "windowsVirtualKeyCode": info["keyCode"],
                    "nativeVirtualKeyCode": info["keyCode"],
                    "location": info.get("location", 0),
                },
            )

    async def viewport_center(self) -> tuple[float, float]:
        metrics = await self.send("Page.getLayoutMetrics")
        viewport = metrics["visualViewport"]
        return viewport["clientWidth"] / 2, viewport["clientHeight"] / 2

    async def screenshot(self) -> str:
        result = await self.send("Page.captureScreenshot", {"format": "png"})
        return result["data"]
