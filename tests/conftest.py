"""Shared fixtures for pagedriver tests."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from pagebuilder import FakePageDom, document, el
from pagedriver.config import DriverConfig, StabilityConfig
from pagedriver.host import BrowserHost


@pytest.fixture
def sessions_dir(tmp_path, monkeypatch):
    """Patch Path.home() so session dirs live under tmp_path."""
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    return tmp_path / ".pagedriver" / "sessions"


@pytest.fixture
def output_dir(tmp_path, monkeypatch):
    """Patch Path.cwd() so output dirs live under tmp_path."""
    monkeypatch.setattr(Path, "cwd", lambda: tmp_path)
    return tmp_path / ".pagedriver"


@pytest.fixture
def default_config():
    """Return a default DriverConfig instance."""
    return DriverConfig()


@pytest.fixture
def fast_config():
    """A config with the timing constants shrunk so tests run quickly."""
    config = DriverConfig()
    config.stability = StabilityConfig(settle_ms=1, poll_ms=1, window_ms=50, tolerance_px=1.0)
    config.timeouts.poll = 5
    config.timeouts.inject_settle = 0
    config.timeouts.page_ready_settle = 0
    config.timeouts.wait_retry = 5
    config.timeouts.wait_min_attempt = 20
    config.recording.pump_interval_ms = 5
    config.recording.scroll_quiet_ms = 20
    return config


@pytest.fixture
def config_dict(default_config):
    """Return a default config as a dict (for passing to daemons)."""
    return default_config.model_dump()


@pytest.fixture
def config_file(tmp_path):
    """Write a config JSON file and return its path."""
    config = {
        "browser": {
            "browser_name": "firefox",
            "isolated": True,
        },
        "output_dir": ".custom-output",
    }
    path = tmp_path / "test-config.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return path


@pytest.fixture
def login_document():
    """A small login page used across engine tests."""
    return document(
        el("h1", "Sign in"),
        el(
            "form",
            el("label", "Email", for_="email"),
            el("input", id="email", type="email", name="email", placeholder="you@example.com"),
            el("input", id="password", type="password", name="password"),
            el("button", "Continue", type="submit", data_testid="login-submit"),
            id="login",
        ),
        el("a", "Forgot password?", href="/reset"),
        title="Sign in",
        url="https://example.com/login",
    )


@pytest.fixture
def fake_dom(login_document):
    return FakePageDom(login_document)


@pytest.fixture
def mock_cdp():
    """A MagicMock standing in for a Patchright CDPSession."""
    cdp = MagicMock()
    cdp.send = AsyncMock(return_value={})
    cdp.detach = AsyncMock()
    cdp.on = MagicMock()
    cdp.remove_listener = MagicMock()
    return cdp


@pytest.fixture
def mock_page():
    """A MagicMock standing in for a Playwright Page."""
    page = MagicMock()
    page.url = "https://example.com/login"
    page.title = AsyncMock(return_value="Sign in")
    page.goto = AsyncMock()
    page.evaluate = AsyncMock(return_value=True)
    page.wait_for_load_state = AsyncMock()
    page.bring_to_front = AsyncMock()
    page.close = AsyncMock()
    page.on = MagicMock()
    page.remove_listener = MagicMock()
    page.main_frame = MagicMock()
    return page


@pytest.fixture
def mock_context(mock_page, mock_cdp):
    """A MagicMock standing in for a Playwright BrowserContext."""
    ctx = MagicMock()
    ctx.pages = [mock_page]
    ctx.new_page = AsyncMock(return_value=mock_page)
    ctx.new_cdp_session = AsyncMock(return_value=mock_cdp)
    ctx.close = AsyncMock()
    ctx.on = MagicMock()
    return ctx


@pytest.fixture
def mock_browser(mock_context):
    """A MagicMock standing in for a Playwright Browser."""
    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=mock_context)
    browser.close = AsyncMock()
    browser.contexts = [mock_context]
    return browser


@pytest.fixture
def browser_host(sessions_dir, default_config, mock_page, mock_context, mock_browser):
    """A BrowserHost with mocked Playwright objects pre-wired and one target."""
    host = BrowserHost(default_config, "test-session")
    host.playwright = MagicMock()
    host.browser = mock_browser
    host.context = mock_context
    host._register(mock_page)
    return host
