"""Session/command dispatcher.

Owns the attachment to one browser target and routes command envelopes
either to CDP input simulation or to the page agent:

    {"id": 7, "cmd": "click", "args": {"selector": "#go"}}
    -> {"id": 7, "ok": true, "result": {"clicked": "#go", "x": 120, "y": 48}}

Command names map to ``cmd_*`` handlers with camelCase, dotted and dashed
names converted to snake_case (``extractAll`` -> ``cmd_extract_all``,
``recording.start`` -> ``cmd_recording_start``). Argument names are converted
the same way.
"""

from __future__ import annotations

import asyncio
import base64
import enum
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from patchright.async_api import TimeoutError as PlaywrightTimeoutError

from pagedriver.agent import PageAgent
from pagedriver.bridge import PageDom
from pagedriver.cache import DomainConfigCache, EmbedConfigService
from pagedriver.channel import AgentChannel
from pagedriver.config import DriverConfig
from pagedriver.errors import (
    CommandTimeout,
    DispatchFailure,
    DriverError,
    NotConnected,
    NotFound,
    RestrictedTarget,
    UnknownCommand,
)
from pagedriver.host import BrowserHost, is_restricted
from pagedriver.input import CDPInputSimulator, InputSimulator
from pagedriver.runtime import output_path

logger = logging.getLogger(__name__)

Observer = Callable[[dict[str, Any]], None]

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def to_snake_case(name: str) -> str:
    return _CAMEL_RE.sub("_", name).replace(".", "_").replace("-", "_").lower()


class SessionState(str, enum.Enum):
    DETACHED = "detached"
    ATTACHING = "attaching"
    ATTACHED = "attached"


@dataclass
class Session:
    target_id: int
    url: str
    page: Any
    cdp: Any = None
    input: InputSimulator | None = None
    dom: PageDom | None = None
    channel: AgentChannel | None = None
    agent: PageAgent | None = None
    state: SessionState = SessionState.ATTACHING
    cursor: tuple[float, float] | None = None
    listeners: list[tuple[Any, str, Callable]] = field(default_factory=list)

    @property
    def recording(self) -> bool:
        return self.agent is not None and self.agent.recording.active


class Dispatcher:
    def __init__(
        self,
        host: BrowserHost,
        config: DriverConfig,
        embed: EmbedConfigService | None = None,
    ) -> None:
        self.host = host
        self.config = config
        self.cache = embed.cache if embed is not None else DomainConfigCache()
        self.embed = embed or EmbedConfigService(config.embed, self.cache)
        self.session: Session | None = None
        self.observers: list[Observer] = []
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()

    # -- observers -----------------------------------------------------------

    def subscribe(self, observer: Observer) -> None:
        self.observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        if observer in self.observers:
            self.observers.remove(observer)

    def emit(self, event: dict[str, Any]) -> None:
        for observer in list(self.observers):
            try:
                observer(event)
            except Exception:
                logger.exception("Observer failed while handling an event")

    def status(self) -> dict[str, Any]:
        session = self.session
        attached = session is not None and session.state is SessionState.ATTACHED
        return {
            "connected": attached,
            "targetId": session.target_id if session else None,
            "state": session.state.value if session else SessionState.DETACHED.value,
            "recording": bool(session and session.recording),
        }

    def broadcast_status(self) -> None:
        self.emit({"event": "status", **self.status()})

    # -- envelope handling ---------------------------------------------------

    async def dispatch(self, envelope: dict[str, Any]) -> dict[str, Any]:
        request_id = envelope.get("id")
        cmd = envelope.get("cmd", "")
        args = envelope.get("args") or {}

        async with self._lock:
            try:
                result = await self.handle_command(cmd, args)
            except DriverError as exc:
                logger.warning(f"Command {cmd!r} failed: {exc}")
                return {"id": request_id, **exc.to_response()}
            except Exception as exc:
                logger.exception(f"Command {cmd!r} raised an exception")
                return {"id": request_id, **DispatchFailure(str(exc)).to_response()}

        logger.debug(f"Command {cmd!r} succeeded")
        return {"id": request_id, "ok": True, "result": result}

    async def handle_command(self, cmd: str, args: dict[str, Any]) -> dict[str, Any]:
        handler = getattr(self, f"cmd_{to_snake_case(cmd)}", None) if cmd else None
        if handler is None:
            raise UnknownCommand(f"Unknown command: {cmd}")
        kwargs = {to_snake_case(k): v for k, v in args.items()}
        return await handler(**kwargs)

    # -- attachment ----------------------------------------------------------

    def _require_session(self) -> Session:
        session = self.session
        if session is None or session.state is not SessionState.ATTACHED:
            raise NotConnected("Not connected to a target")
        return session

    def _check_restricted(self, url: str | None) -> None:
        if is_restricted(url, self.config.restricted_prefixes):
            raise RestrictedTarget(f"Cannot automate restricted page: {url}")

    def _listen(self, session: Session, emitter: Any, event: str, callback: Callable) -> None:
        emitter.on(event, callback)
        session.listeners.append((emitter, event, callback))

    def _install_listeners(self, session: Session) -> None:
        page = session.page
        self._listen(session, page, "close", lambda _p: self._on_lost(session, "target closed"))
        self._listen(session, page, "crash", lambda _p: self._on_lost(session, "page crashed"))
        self._listen(session, page, "framenavigated", lambda f: self._on_navigated(session, f))
        self._listen(session, page, "load", lambda _p: self._on_load(session))
        self._listen(
            session,
            session.cdp,
            "Inspector.detached",
            lambda params: self._on_lost(session, (params or {}).get("reason", "detached")),
        )

    def _remove_listeners(self, session: Session) -> None:
        for emitter, event, callback in session.listeners:
            try:
                emitter.remove_listener(event, callback)
            except Exception as exc:
                logger.debug(f"Could not remove {event} listener: {exc}")
        session.listeners.clear()

    async def _release(self, session: Session) -> None:
        self._remove_listeners(session)
        if session.channel is not None:
            session.channel.close()
        if session.agent is not None:
            await session.agent.close()
        if session.cdp is not None:
            try:
                await session.cdp.detach()
            except Exception as exc:
                logger.debug(f"CDP session already gone: {exc}")
        session.state = SessionState.DETACHED

    def _on_lost(self, session: Session, reason: str) -> None:
        if self.session is not session or session.state is SessionState.DETACHED:
            return
        logger.warning(f"Lost attachment to target {session.target_id}: {reason}")
        session.state = SessionState.DETACHED
        self.session = None
        self._spawn(self._release(session))
        self.broadcast_status()

    def _on_navigated(self, session: Session, frame: Any) -> None:
        if frame != session.page.main_frame:
            return
        session.url = frame.url
        if session.agent is not None:
            session.agent.forget_refs()
        if session.recording:
            self.emit({"event": "navigate", "url": frame.url})

    def _on_load(self, session: Session) -> None:
        if session.recording and self.session is session:
            self._spawn(self._reattach_recording(session))

    async def _reattach_recording(self, session: Session) -> None:
        try:
            await self._ensure_bridge(session)
            await session.channel.request("recording.reattach")
        except DriverError as exc:
            logger.warning(f"Could not reattach recording listeners: {exc}")

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _ensure_bridge(self, session: Session) -> None:
        self._check_restricted(session.page.url)
        if await session.dom.ping():
            return
        logger.debug(f"Injecting page bridge into target {session.target_id}")
        session.agent.forget_refs()
        try:
            await session.dom.inject()
        except Exception as exc:
            raise DispatchFailure(f"Could not inject page agent: {exc}") from exc
        await asyncio.sleep(self.config.timeouts.inject_settle / 1000)

    async def _agent(self) -> Session:
        session = self._require_session()
        await self._ensure_bridge(session)
        return session

    async def _wait_for_page_ready(self, session: Session) -> None:
        timeouts = self.config.timeouts
        try:
            await session.page.wait_for_load_state("load", timeout=timeouts.page_ready)
        except PlaywrightTimeoutError:
            logger.debug("Page did not finish loading in time, continuing")
        await asyncio.sleep(timeouts.page_ready_settle / 1000)

    async def _coordinates(self, session: Session, action: str, **params: Any) -> tuple[int, int]:
        reply = await session.channel.request(action, **params)
        if not reply.get("found"):
            raise NotFound(reply.get("reason") or "Element not found")
        return reply["x"], reply["y"]

    # -- commands: session ---------------------------------------------------

    async def cmd_connect(self, target_id: int | None = None) -> dict[str, Any]:
        """Attach to a target, replacing any current session.

        *target_id* picks a page from ``targets``; without it the host chooses
        the active page. Restricted pages are refused before anything is
        attached.
        """
        if self.session is not None:
            await self.cmd_disconnect()

        target_id, page = self.host.resolve_target(target_id)
        self._check_restricted(page.url)

        session = Session(target_id=target_id, url=page.url, page=page)
        self.session = session
        self.broadcast_status()
        try:
            session.cdp = await self.host.open_cdp(page)
            session.input = CDPInputSimulator(session.cdp)
            session.dom = PageDom(page)
            session.channel = AgentChannel(timeout=self.config.timeouts.command / 1000)
            session.agent = PageAgent(session.dom, session.channel, self.config, self.emit)
            session.agent.start()
            self._install_listeners(session)
        except Exception:
            await self._release(session)
            self.session = None
            self.broadcast_status()
            raise

        session.state = SessionState.ATTACHED
        self.cache.clear()
        logger.info(f"Attached to target {target_id} ({page.url})")
        self.broadcast_status()
        return {"targetId": target_id, "url": page.url}

    async def cmd_disconnect(self) -> dict[str, Any]:
        """Detach from the current target. Safe to call when nothing is attached."""
        session = self.session
        if session is not None:
            self.session = None
            await self._release(session)
            logger.info(f"Detached from target {session.target_id}")
            self.broadcast_status()
        return {"disconnected": True}

    async def cmd_status(self) -> dict[str, Any]:
        return self.status()

    async def cmd_targets(self) -> dict[str, Any]:
        """List the pages the browser host currently exposes."""
        return {"targets": self.host.targets()}

    # -- commands: navigation & input ----------------------------------------

    async def cmd_navigate(self, url: str) -> dict[str, Any]:
        """Load *url* in the attached page; a slow load is reported, not raised."""
        session = self._require_session()
        self._check_restricted(url)
        try:
            await session.page.goto(
                url, wait_until="load", timeout=self.config.timeouts.navigation
            )
        except PlaywrightTimeoutError:
            logger.warning(f"Navigation to {url} did not finish loading in time")
            return {"url": session.page.url, "timeout": True}
        return {"url": session.page.url}

    async def cmd_click(self, selector: str) -> dict[str, Any]:
        """Click the centre of the element matching *selector* once it is stable."""
        session = await self._agent()
        x, y = await self._coordinates(session, "getCoordinates", selector=selector)
        await session.input.click(x, y)
        session.cursor = (x, y)
        return {"clicked": selector, "x": x, "y": y}

    async def cmd_click_ref(self, ref: int) -> dict[str, Any]:
        """Click the element behind *ref* from the latest aria snapshot."""
        session = await self._agent()
        x, y = await self._coordinates(session, "getCoordinatesByRef", ref=ref)
        await session.input.click(x, y)
        session.cursor = (x, y)
        return {"clicked": f"ref={ref}", "ref": ref, "x": x, "y": y}

    async def _type_at(
        self, session: Session, x: int, y: int, text: str, clear: bool, submit: bool
    ) -> None:
        await session.input.click(x, y)
        session.cursor = (x, y)
        if clear:
            await session.input.select_all()
        await session.input.insert_text(text)
        if submit:
            await session.input.press_enter()

    async def cmd_type(
        self, selector: str, text: str, clear: bool = True, submit: bool = False
    ) -> dict[str, Any]:
        """Click into *selector* and insert *text*, optionally clearing first and submitting."""
        session = await self._agent()
        x, y = await self._coordinates(session, "getCoordinates", selector=selector)
        await self._type_at(session, x, y, text, clear, submit)
        return {"typed": text, "selector": selector}

    async def cmd_type_ref(
        self, ref: int, text: str, clear: bool = True, submit: bool = False
    ) -> dict[str, Any]:
        session = await self._agent()
        x, y = await self._coordinates(session, "getCoordinatesByRef", ref=ref)
        await self._type_at(session, x, y, text, clear, submit)
        return {"typed": text, "ref": ref}

    async def cmd_hover(self, selector: str) -> dict[str, Any]:
        """Move the pointer over *selector* without clicking."""
        session = await self._agent()
        x, y = await self._coordinates(session, "getCoordinates", selector=selector)
        await session.input.mouse_move(x, y)
        session.cursor = (x, y)
        return {"hovered": selector, "x": x, "y": y}

    async def cmd_scroll(
        self, direction: str = "down", amount: int = 300, selector: str | None = None
    ) -> dict[str, Any]:
        """Wheel-scroll over *selector*, the last pointer position or the viewport centre."""
        deltas = {
            "up": (0, -amount),
            "down": (0, amount),
            "left": (-amount, 0),
            "right": (amount, 0),
        }
        if direction not in deltas:
            raise DispatchFailure(f"Invalid scroll direction: {direction}")

        if selector:
            session = await self._agent()
            x, y = await self._coordinates(session, "getCoordinates", selector=selector)
        else:
            session = self._require_session()
            if session.cursor is not None:
                x, y = session.cursor
            else:
                x, y = await session.input.viewport_center()

        delta_x, delta_y = deltas[direction]
        await session.input.wheel(x, y, delta_x, delta_y)
        return {"scrolled": direction, "amount": amount, "x": x, "y": y}

    async def cmd_press_key(self, key: str, selector: str | None = None) -> dict[str, Any]:
        """Press *key*, focusing *selector* first when given."""
        if selector:
            await self.cmd_focus(selector)
            await asyncio.sleep(0.1)
        session = self._require_session()
        await session.input.press_key(key)
        return {"pressed": key, "selector": selector}

    async def cmd_focus(self, selector: str | None = None) -> dict[str, Any]:
        """Focus the element for *selector*, or bring the attached tab to the front."""
        if selector is None:
            session = self._require_session()
            await self.host.focus(session.target_id)
            return {"focused": True, "targetId": session.target_id}
        session = await self._agent()
        reply = await session.channel.request("focus", selector=selector)
        if not reply.get("found"):
            raise NotFound(f"Element not found: {selector}")
        return {"focused": selector}

    async def cmd_screenshot(self) -> dict[str, Any]:
        """Capture the viewport and save a copy under ``output_dir``."""
        session = self._require_session()
        data = await session.input.screenshot()
        path = output_path(self.config.output_dir, "page", "png")
        path.write_bytes(base64.b64decode(data))
        return {"image": f"data:image/png;base64,{data}", "path": str(path)}

    # -- commands: waiting ---------------------------------------------------

    async def cmd_wait(
        self, selector: str | None = None, ms: int | None = None, timeout: int | None = None
    ) -> dict[str, Any]:
        """Sleep for *ms*, or wait for *selector* to appear.

        A fixed delay takes precedence over a selector; with neither this
        returns ``{"waited": 0}`` at once. Selector waits survive navigation:
        each failed attempt is retried on the new document until *timeout*.
        """
        if ms:
            await asyncio.sleep(ms / 1000)
            return {"waited": ms}
        if not selector:
            return {"waited": 0}

        timeouts = self.config.timeouts
        timeout = timeout if timeout is not None else timeouts.wait
        deadline = time.monotonic() + timeout / 1000
        last_error: DriverError | None = None

        while True:
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                break
            session = self._require_session()
            attempt_ms = max(remaining_ms, timeouts.wait_min_attempt)
            try:
                await self._wait_for_page_ready(session)
                await self._ensure_bridge(session)
                reply = await session.channel.request(
                    "waitForElement",
                    timeout=attempt_ms / 1000 + 5,
                    selector=selector,
                    timeout_ms=attempt_ms,
                )
                if reply.get("found"):
                    return {"found": True, "selector": selector}
            except (NotConnected, RestrictedTarget):
                raise
            except DriverError as exc:
                # The page usually navigated mid-wait; try again on the new document.
                logger.debug(f"wait for {selector!r} retrying after: {exc}")
                last_error = exc
                await asyncio.sleep(timeouts.wait_retry / 1000)

        message = f"Timed out after {timeout}ms waiting for {selector}"
        if last_error is not None:
            message = f"{message} (last error: {last_error})"
        raise CommandTimeout(message)

    async def cmd_exists(self, selector: str, timeout: int | None = None) -> dict[str, Any]:
        """Report whether *selector* shows up within *timeout*; failures mean absent."""
        timeout = timeout if timeout is not None else self.config.timeouts.exists
        try:
            session = self._require_session()
            await self._wait_for_page_ready(session)
            await self._ensure_bridge(session)
            reply = await session.channel.request(
                "exists", timeout=timeout / 1000 + 5, selector=selector, timeout_ms=timeout
            )
        except DriverError as exc:
            logger.debug(f"exists({selector!r}) treated as absent: {exc}")
            return {"exists": False}
        return {"exists": bool(reply.get("exists"))}

    # -- commands: introspection ---------------------------------------------

    async def cmd_extract(self, selector: str) -> dict[str, Any]:
        """Visible text of the first element matching *selector*."""
        session = await self._agent()
        reply = await session.channel.request("extract", selector=selector)
        if not reply.get("found"):
            raise NotFound(f"Element not found: {selector}")
        return {"text": reply["text"]}

    async def cmd_extract_all(self, selector: str, separator: str = ", ") -> dict[str, Any]:
        session = await self._agent()
        reply = await session.channel.request(
            "extractAll", selector=selector, separator=separator
        )
        if not reply.get("found"):
            raise NotFound(f"Element not found: {selector}")
        return {"text": reply["text"]}

    async def cmd_snapshot(self) -> dict[str, Any]:
        session = await self._agent()
        reply = await session.channel.request("snapshot")
        return {"tree": reply["tree"]}

    async def cmd_aria_snapshot(self, include_content: bool = False) -> dict[str, Any]:
        """Render the accessibility tree as YAML and hand out fresh refs.

        Refs stay valid until the next snapshot, a main-frame navigation or
        a re-injection of the page bridge.
        """
        session = await self._agent()
        reply = await session.channel.request("ariaSnapshot", include_content=include_content)
        return {"snapshot": reply["snapshot"], "refCount": reply["refCount"]}

    async def cmd_capture_selectors(self) -> dict[str, Any]:
        session = await self._agent()
        return await session.channel.request("captureSelectors")

    # -- commands: recording -------------------------------------------------

    async def cmd_recording_start(self) -> dict[str, Any]:
        """Begin streaming user actions to subscribers as recording events."""
        session = await self._agent()
        await session.channel.request("recording.start")
        self.broadcast_status()
        return {"recording": True}

    async def cmd_recording_stop(self) -> dict[str, Any]:
        session = self._require_session()
        await session.channel.request("recording.stop")
        self.broadcast_status()
        return {"recording": False}

    # -- commands: embed configs ---------------------------------------------

    async def cmd_embed_configs(self, url: str | None = None) -> dict[str, Any]:
        """Embed configs for the domain of *url*, defaulting to the attached page."""
        if url is None:
            url = self._require_session().page.url
        domain = urlparse(url).hostname
        if not domain or is_restricted(url, self.config.restricted_prefixes):
            return {"domain": domain, "configs": []}
        return {"domain": domain, "configs": await self.embed.configs_for_url(url)}

    async def cmd_embed_cache_clear(self, domain: str | None = None) -> dict[str, Any]:
        if domain:
            self.cache.invalidate(domain)
        else:
            self.cache.clear()
        return {"cleared": domain or "all"}

    # -- shutdown ------------------------------------------------------------

    async def close(self) -> None:
        await self.cmd_disconnect()
        for task in list(self._background):
            task.cancel()
        await self.embed.aclose()
