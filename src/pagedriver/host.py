"""The Patchright browser the driver attaches to.

Owns the Playwright objects and hands out small integer target ids, one per
page, in the order the pages appear in the browser context.
"""

from __future__ import annotations

import itertools
import logging
import os
from typing import Any

from patchright.async_api import TimeoutError as PlaywrightTimeoutError
from patchright.async_api import async_playwright

from pagedriver.config import DriverConfig
from pagedriver.errors import NotFound
from pagedriver.runtime import SessionPaths

logger = logging.getLogger(__name__)

_STEALTH_IGNORED_ARGS = [
    "--enable-automation",
    "--disable-popup-blocking",
    "--disable-component-update",
    "--disable-default-apps",
    "--disable-extensions",
    "--disable-background-networking",
]


def is_restricted(url: str | None, prefixes: list[str]) -> bool:
    if not url:
        return False
    return any(url.startswith(prefix) for prefix in prefixes)


class BrowserHost:
    def __init__(self, config: DriverConfig, session_name: str = "default") -> None:
        self.config = config
        self.session_name = session_name
        self.playwright: Any = None
        self.browser: Any = None
        self.context: Any = None
        self.pages: dict[int, Any] = {}
        self.active_id: int | None = None
        self._ids = itertools.count(1)

    # -- lifecycle -----------------------------------------------------------

    def _launch_options(self) -> dict[str, Any]:
        bcfg = self.config.browser
        launch_opts = dict(bcfg.launch_options)
        if bcfg.browser_name != "chromium":
            return launch_opts

        existing = launch_opts.get("ignore_default_args")
        if isinstance(existing, list):
            launch_opts["ignore_default_args"] = existing + [
                flag for flag in _STEALTH_IGNORED_ARGS if flag not in existing
            ]
        elif existing is not True:
            launch_opts["ignore_default_args"] = list(_STEALTH_IGNORED_ARGS)

        args = list(launch_opts.get("args", []))
        if not any("AutomationControlled" in a for a in args):
            args.append("--disable-blink-features=AutomationControlled")
            args.append("--test-type")
        launch_opts["args"] = args

        # Patchright replaces the child environment wholesale.
        env = {**os.environ, **launch_opts.get("env", {})}
        env.setdefault("GOOGLE_API_KEY", "no")
        env.setdefault("GOOGLE_DEFAULT_CLIENT_ID", "no")
        launch_opts["env"] = env
        return launch_opts

    async def start(self) -> None:
        """Launch or connect to the browser and register its open pages.

        An external CDP endpoint wins; otherwise a persistent profile is used
        unless the config asks for an isolated browser. At least one page is
        always registered, and the last one becomes the active target.
        """
        bcfg = self.config.browser
        self.playwright = await async_playwright().start()
        browser_type = getattr(self.playwright, bcfg.browser_name)
        context_opts = dict(bcfg.context_options)

        if bcfg.cdp_endpoint:
            self.browser = await browser_type.connect_over_cdp(
                bcfg.cdp_endpoint,
                headers=bcfg.cdp_headers or None,
                timeout=bcfg.cdp_timeout,
            )
            if self.browser.contexts:
                self.context = self.browser.contexts[0]
            else:
                self.context = await self.browser.new_context(**context_opts)
        elif bcfg.user_data_dir or not bcfg.isolated:
            user_data = bcfg.user_data_dir or str(SessionPaths(self.session_name).profile_dir)
            self.context = await browser_type.launch_persistent_context(
                user_data, **self._launch_options(), **context_opts
            )
            self.browser = self.context
        else:
            self.browser = await browser_type.launch(**self._launch_options())
            self.context = await self.browser.new_context(**context_opts)

        self.context.on("page", self._register)
        for page in self.context.pages:
            self._register(page)
        if not self.pages:
            self._register(await self.context.new_page())

        page = self.pages[self.active_id]
        for url in bcfg.init_page:
            await page.goto(url, wait_until="domcontentloaded")
            try:
                await page.wait_for_load_state("load", timeout=5000)
            except PlaywrightTimeoutError:
                pass
        logger.info(f"Browser ready with {len(self.pages)} target(s)")

    async def stop(self) -> None:
        """Close the context, browser and Patchright driver. Errors are only logged."""
        try:
            if self.context is not None and self.context is not self.browser:
                await self.context.close()
            if self.browser is not None:
                await self.browser.close()
            if self.playwright is not None:
                await self.playwright.stop()
        except Exception as exc:
            logger.warning(f"Error while closing browser: {exc}")
        self.pages.clear()
        self.active_id = None

    # -- targets -------------------------------------------------------------

    def _register(self, page: Any) -> None:
        if page in self.pages.values():
            return
        target_id = next(self._ids)
        self.pages[target_id] = page
        self.active_id = target_id
        page.on("close", lambda _page: self._unregister(target_id))
        logger.debug(f"Target {target_id} registered: {page.url}")

    def _unregister(self, target_id: int) -> None:
        self.pages.pop(target_id, None)
        if self.active_id == target_id:
            self.active_id = max(self.pages) if self.pages else None
        logger.debug(f"Target {target_id} closed")

    def targets(self) -> list[dict[str, Any]]:
        """Known pages as ``{"targetId", "url", "active"}`` dicts."""
        return [
            {"targetId": target_id, "url": page.url, "active": target_id == self.active_id}
            for target_id, page in self.pages.items()
        ]

    def resolve_target(self, target_id: int | None = None) -> tuple[int, Any]:
        """Map *target_id* (default: the active one) to its page or raise NotFound."""
        if target_id is None:
            target_id = self.active_id
        page = self.pages.get(int(target_id)) if target_id is not None else None
        if page is None:
            raise NotFound(f"No target with id {target_id}")
        return int(target_id), page

    async def focus(self, target_id: int) -> None:
        """Bring a target to the front and make it the active one."""
        _, page = self.resolve_target(target_id)
        await page.bring_to_front()
        self.active_id = target_id

    async def open_cdp(self, page: Any) -> Any:
        return await self.context.new_cdp_session(page)
