"""Shared fixtures for pagedriver integration tests.

These fixtures launch a real headless Chromium browser via Patchright and
attach a :class:`~pagedriver.dispatcher.Dispatcher` to a data: URL page.
"""

from __future__ import annotations

import urllib.parse
from pathlib import Path

import pytest

from pagedriver.config import BrowserConfig, DriverConfig, EmbedConfig
from pagedriver.dispatcher import Dispatcher
from pagedriver.host import BrowserHost

TEST_HTML = "data:text/html," + urllib.parse.quote(
    """<html><head><title>Integration</title></head><body>
<h1>Test Page</h1>
<nav><a href="#top">Top</a></nav>
<article>
  <h2>Release notes</h2>
  <p>This release improves selector resolution for buttons with nested labels
  and adds content extraction that skips navigation and boilerplate blocks.</p>
  <p>It also changes how recordings coalesce scroll events so that a single
  gesture produces one event with the net distance travelled.</p>
</article>
<form id="login">
  <label for="username">Username</label>
  <input type="text" id="username" name="username" placeholder="Enter username">
  <button type="submit" data-testid="submit-btn"><span>Sign in</span></button>
</form>
<ul><li class="item">One</li><li class="item">Two</li></ul>
<button id="reveal" onclick="setTimeout(() => {
  const d = document.createElement('div'); d.id = 'result'; d.textContent = 'Done';
  document.body.appendChild(d);
}, 100)">Reveal</button>
</body></html>"""
)


@pytest.fixture
def integration_config() -> DriverConfig:
    """Isolated headless Chromium (no sandbox), embed lookups off."""
    return DriverConfig(
        browser=BrowserConfig(
            isolated=True,
            launch_options={"headless": True, "chromium_sandbox": False},
            context_options={},
        ),
        embed=EmbedConfig(enabled=False),
    )


@pytest.fixture
async def browser_host_real(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, integration_config: DriverConfig
) -> BrowserHost:
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    monkeypatch.setattr(Path, "cwd", lambda: tmp_path)

    host = BrowserHost(integration_config, "integration-test")
    await host.start()
    yield host
    await host.stop()


@pytest.fixture
async def attached(browser_host_real: BrowserHost, integration_config: DriverConfig):
    """A Dispatcher attached to the test page."""
    _, page = browser_host_real.resolve_target(None)
    await page.goto(TEST_HTML)

    dispatcher = Dispatcher(browser_host_real, integration_config)
    response = await dispatcher.dispatch({"id": 0, "cmd": "connect"})
    assert response["ok"] is True, response
    yield dispatcher
    await dispatcher.close()
