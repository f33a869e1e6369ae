"""Tests for pagedriver.host module."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pagedriver.config import BrowserConfig, DriverConfig
from pagedriver.errors import NotFound
from pagedriver.host import BrowserHost, is_restricted


def _mock_page(url="about:blank"):
    page = MagicMock()
    page.url = url
    page.goto = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.bring_to_front = AsyncMock()
    return page


def _close_handler(page):
    for c in page.on.call_args_list:
        if c.args[0] == "close":
            return c.args[1]
    raise AssertionError("no close handler")


@pytest.fixture
def mock_playwright(mock_context, mock_browser):
    pw = MagicMock()
    pw.chromium.launch = AsyncMock(return_value=mock_browser)
    pw.chromium.launch_persistent_context = AsyncMock(return_value=mock_context)
    pw.chromium.connect_over_cdp = AsyncMock(return_value=mock_browser)
    pw.stop = AsyncMock()
    starter = MagicMock()
    starter.start = AsyncMock(return_value=pw)
    with patch("pagedriver.host.async_playwright", return_value=starter):
        yield pw


class TestIsRestricted:
    def test_prefixes(self, default_config):
        prefixes = default_config.restricted_prefixes
        assert is_restricted("chrome://settings", prefixes)
        assert is_restricted("about:blank", prefixes)
        assert not is_restricted("https://example.com", prefixes)
        assert not is_restricted(None, prefixes)


class TestLaunchOptions:
    def test_stealth_flags(self, default_config):
        opts = BrowserHost(default_config)._launch_options()
        assert "--enable-automation" in opts["ignore_default_args"]
        assert "--disable-blink-features=AutomationControlled" in opts["args"]
        assert opts["env"]["GOOGLE_API_KEY"] == "no"

    def test_existing_ignore_list_merged(self):
        config = DriverConfig(
            browser=BrowserConfig(launch_options={"ignore_default_args": ["--mute-audio"]})
        )
        opts = BrowserHost(config)._launch_options()
        assert opts["ignore_default_args"][0] == "--mute-audio"
        assert "--disable-extensions" in opts["ignore_default_args"]

    def test_firefox_untouched(self):
        config = DriverConfig(
            browser=BrowserConfig(browser_name="firefox", launch_options={"headless": True})
        )
        assert BrowserHost(config)._launch_options() == {"headless": True}


class TestStart:
    async def test_persistent_by_default(self, sessions_dir, default_config, mock_playwright, mock_context):
        host = BrowserHost(default_config, "s1")
        await host.start()
        args = mock_playwright.chromium.launch_persistent_context.call_args
        assert args.args[0] == str(sessions_dir / "s1" / "browser-data")
        assert host.browser is mock_context
        assert host.active_id == 1

    async def test_isolated(self, sessions_dir, mock_playwright, mock_browser):
        config = DriverConfig(browser=BrowserConfig(isolated=True))
        host = BrowserHost(config)
        await host.start()
        mock_playwright.chromium.launch.assert_awaited_once()
        mock_browser.new_context.assert_awaited_once_with(no_viewport=True)

    async def test_cdp_endpoint_reuses_context(self, sessions_dir, mock_playwright, mock_context):
        config = DriverConfig(browser=BrowserConfig(cdp_endpoint="http://localhost:9222"))
        host = BrowserHost(config)
        await host.start()
        mock_playwright.chromium.connect_over_cdp.assert_awaited_once_with(
            "http://localhost:9222", headers=None, timeout=30000
        )
        assert host.context is mock_context

    async def test_creates_page_when_context_empty(self, sessions_dir, default_config, mock_playwright, mock_context):
        mock_context.pages = []
        host = BrowserHost(default_config)
        await host.start()
        mock_context.new_page.assert_awaited_once()

    async def test_init_pages_visited(self, sessions_dir, mock_playwright, mock_page):
        config = DriverConfig(browser=BrowserConfig(init_page=["https://a.test", "https://b.test"]))
        await BrowserHost(config).start()
        assert [c.args[0] for c in mock_page.goto.call_args_list] == [
            "https://a.test",
            "https://b.test",
        ]

    async def test_stop(self, sessions_dir, default_config, mock_playwright, mock_context):
        host = BrowserHost(default_config)
        await host.start()
        await host.stop()
        mock_context.close.assert_awaited_once()
        mock_playwright.stop.assert_awaited_once()
        assert host.pages == {}


class TestTargets:
    def test_register_assigns_increasing_ids(self, browser_host):
        second = _mock_page("https://b.test")
        browser_host._register(second)
        browser_host._register(second)
        assert [t["targetId"] for t in browser_host.targets()] == [1, 2]
        assert browser_host.active_id == 2

    def test_targets_listing(self, browser_host):
        assert browser_host.targets() == [
            {"targetId": 1, "url": "https://example.com/login", "active": True}
        ]

    def test_resolve_active(self, browser_host, mock_page):
        assert browser_host.resolve_target() == (1, mock_page)

    def test_resolve_unknown(self, browser_host):
        with pytest.raises(NotFound):
            browser_host.resolve_target(42)

    def test_closed_page_unregistered(self, browser_host, mock_page):
        second = _mock_page("https://b.test")
        browser_host._register(second)
        _close_handler(second)(second)
        assert browser_host.active_id == 1
        _close_handler(mock_page)(mock_page)
        assert browser_host.targets() == []
        assert browser_host.active_id is None

    async def test_focus(self, browser_host, mock_page):
        browser_host._register(_mock_page())
        await browser_host.focus(1)
        mock_page.bring_to_front.assert_awaited_once()
        assert browser_host.active_id == 1

    async def test_open_cdp(self, browser_host, mock_page, mock_context, mock_cdp):
        assert await browser_host.open_cdp(mock_page) is mock_cdp
        mock_context.new_cdp_session.assert_awaited_once_with(mock_page)
