"""Tests for pagedriver.agent module."""

from __future__ import annotations

import asyncio

import pytest

from pagedriver.agent import PageAgent
from pagedriver.channel import AgentChannel
from pagedriver.errors import DispatchFailure


@pytest.fixture
async def agent(fake_dom, fast_config):
    agent = PageAgent(fake_dom, AgentChannel(timeout=2), fast_config, lambda event: None)
    agent.start()
    yield agent
    await agent.close()


def ask(agent, action, **params):
    return agent.channel.request(action, **params)


# ---------------------------------------------------------------------------
# Coordinates
# ---------------------------------------------------------------------------


class TestCoordinates:
    async def test_ping(self, agent):
        assert await ask(agent, "ping") == {"pong": True}

    async def test_by_selector(self, agent):
        result = await ask(agent, "getCoordinates", selector="#email")
        assert result == {"found": True, "x": 60, "y": 20, "width": 100, "height": 20}

    async def test_by_text_selector(self, agent, fake_dom):
        result = await ask(agent, "getCoordinates", selector="button:has-text('Continue')")
        assert result["found"] is True
        assert fake_dom.captures == 1

    async def test_missing_element(self, agent):
        result = await ask(agent, "getCoordinates", selector="#missing")
        assert result == {"found": False, "reason": "Element not found: #missing"}

    async def test_detached_element(self, agent, fake_dom):
        fake_dom.detached.add(6)
        result = await ask(agent, "getCoordinates", selector="input")
        assert result["found"] is True

        fake_dom.detached.add(7)
        result = await ask(agent, "getCoordinates", selector="input")
        assert result["found"] is False

    async def test_by_ref_uses_latest_snapshot(self, agent):
        assert (await ask(agent, "getCoordinatesByRef", ref=4))["found"] is False

        snapshot = await ask(agent, "ariaSnapshot")
        assert snapshot["refCount"] == 7
        result = await ask(agent, "getCoordinatesByRef", ref="4")
        assert result["found"] is True
        assert agent.refs[4] == 6

    async def test_forgotten_refs_no_longer_resolve(self, agent):
        await ask(agent, "ariaSnapshot")
        agent.forget_refs()
        result = await ask(agent, "getCoordinatesByRef", ref=4)
        assert result == {"found": False, "reason": "Element not found for ref=4"}

    async def test_unknown_ref(self, agent):
        await ask(agent, "ariaSnapshot")
        result = await ask(agent, "getCoordinatesByRef", ref=99)
        assert result == {"found": False, "reason": "Element not found for ref=99"}


# ---------------------------------------------------------------------------
# Waiting
# ---------------------------------------------------------------------------


class TestWaiting:
    async def test_wait_for_present_element(self, agent):
        assert await ask(agent, "waitForElement", selector="h1", timeout_ms=50) == {"found": True}

    async def test_wait_gives_up(self, agent):
        result = await ask(agent, "waitForElement", selector="#never", timeout_ms=20)
        assert result == {"found": False}

    async def test_exists(self, agent):
        assert await ask(agent, "exists", selector="form", timeout_ms=10) == {"exists": True}
        assert await ask(agent, "exists", selector="table", timeout_ms=10) == {"exists": False}

    async def test_slow_wait_does_not_block_other_requests(self, agent):
        slow = asyncio.create_task(
            ask(agent, "waitForElement", selector="#later", timeout_ms=300)
        )
        assert await ask(agent, "ping") == {"pong": True}
        assert not slow.done()
        assert await slow == {"found": False}


# ---------------------------------------------------------------------------
# Introspection
# ---------------------------------------------------------------------------


class TestIntrospection:
    async def test_extract(self, agent):
        assert await ask(agent, "extract", selector="h1") == {"found": True, "text": "Sign in"}

    async def test_extract_missing(self, agent):
        assert await ask(agent, "extract", selector="h2") == {"found": False}

    async def test_extract_all(self, agent):
        result = await ask(agent, "extractAll", selector="label, a", separator=" | ")
        assert result == {"found": True, "text": "Email | Forgot password?"}

    async def test_focus(self, agent, fake_dom):
        assert await ask(agent, "focus", selector="#email") == {"found": True, "focused": "#email"}
        assert fake_dom.focused == [6]

    async def test_snapshot_tree(self, agent):
        result = await ask(agent, "snapshot")
        assert result["tree"]["tag"] == "body"

    async def test_aria_snapshot_with_content(self, agent):
        result = await ask(agent, "ariaSnapshot", include_content=True)
        assert "- Page Content\n```markdown\n" in result["snapshot"]

    async def test_capture_selectors(self, agent):
        result = await ask(agent, "captureSelectors")
        assert result["forms"][0]["id"] == "login"

    async def test_unknown_action(self, agent):
        with pytest.raises(DispatchFailure, match="Unknown action: teleport"):
            await ask(agent, "teleport")

    async def test_handler_error_becomes_error_reply(self, agent, fake_dom):
        async def broken_capture():
            raise RuntimeError("Execution context was destroyed")

        fake_dom.capture = broken_capture
        with pytest.raises(DispatchFailure, match="Execution context"):
            await ask(agent, "snapshot")


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------


class TestRecording:
    async def test_start_stop(self, agent, fake_dom):
        assert await ask(agent, "recording.start") == {"recording": True}
        assert fake_dom.recording is True
        assert await ask(agent, "recording.reattach") == {"recording": True}
        assert await ask(agent, "recording.stop") == {"recording": False}
        assert fake_dom.recording is False

    async def test_reattach_when_idle(self, agent, fake_dom):
        assert await ask(agent, "recording.reattach") == {"recording": False}
        assert fake_dom.recording is False

    async def test_close_stops_recording(self, fake_dom, fast_config):
        agent = PageAgent(fake_dom, AgentChannel(timeout=1), fast_config, lambda e: None)
        agent.start()
        await agent.channel.request("recording.start")
        await agent.close()
        assert agent.recording.active is False
        assert fake_dom.recording is False
