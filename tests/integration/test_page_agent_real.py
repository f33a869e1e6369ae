"""Integration tests: the bridge and page agent against a real page."""

from __future__ import annotations

import pytest


async def _run(dispatcher, cmd, **args):
    response = await dispatcher.dispatch({"id": 1, "cmd": cmd, "args": args})
    assert response["ok"] is True, response
    return response["result"]


@pytest.mark.integration
async def test_status_after_connect(attached) -> None:
    status = await _run(attached, "status")
    assert status["connected"] is True
    assert status["state"] == "attached"


@pytest.mark.integration
async def test_extract_and_extract_all(attached) -> None:
    assert (await _run(attached, "extract", selector="h1"))["text"] == "Test Page"
    result = await _run(attached, "extractAll", selector="li.item", separator=" | ")
    assert result["text"] == "One | Two"


@pytest.mark.integration
async def test_has_text_resolves_nested_label(attached) -> None:
    result = await _run(attached, "exists", selector="button:has-text('sign in')")
    assert result["exists"] is True


@pytest.mark.integration
async def test_click_returns_coordinates(attached) -> None:
    result = await _run(attached, "click", selector="#username")
    assert result["x"] > 0
    assert result["y"] > 0


@pytest.mark.integration
async def test_type_sets_value(attached, browser_host_real) -> None:
    await _run(attached, "type", selector="#username", text="alice")
    _, page = browser_host_real.resolve_target(None)
    assert await page.evaluate("() => document.getElementById('username').value") == "alice"


@pytest.mark.integration
async def test_aria_snapshot_and_click_ref(attached) -> None:
    result = await _run(attached, "ariaSnapshot", include_content=True)
    snapshot = result["snapshot"]
    assert 'heading "Test Page"' in snapshot
    assert "Release notes" in snapshot
    assert result["refCount"] > 0

    ref = next(
        int(line.split("[ref=")[1].split("]")[0])
        for line in snapshot.splitlines()
        if line.strip().startswith("- textbox")
    )
    clicked = await _run(attached, "clickRef", ref=ref)
    assert clicked["ref"] == ref


@pytest.mark.integration
async def test_capture_selectors(attached) -> None:
    result = await _run(attached, "captureSelectors")
    selectors = [item["selector"] for item in result["interactive"]]
    assert '[data-testid="submit-btn"]' in selectors
    assert "#username" in selectors


@pytest.mark.integration
async def test_missing_element_is_not_found(attached) -> None:
    response = await attached.dispatch(
        {"id": 5, "cmd": "click", "args": {"selector": "#does-not-exist"}}
    )
    assert response["ok"] is False
    assert response["code"] == "NotFound"


@pytest.mark.integration
async def test_exists_waits_for_element_added_after_click(attached) -> None:
    assert (await _run(attached, "exists", selector="#result", timeout=50))["exists"] is False
    await _run(attached, "click", selector="#reveal")
    assert (await _run(attached, "exists", selector="#result", timeout=1000))["exists"] is True
    assert (await _run(attached, "extract", selector="#result"))["text"] == "Done"


@pytest.mark.integration
async def test_refs_do_not_survive_navigation(attached) -> None:
    snapshot = (await _run(attached, "ariaSnapshot"))["snapshot"]
    ref = next(
        int(line.split("[ref=")[1].split("]")[0])
        for line in snapshot.splitlines()
        if line.strip().startswith("- textbox")
    )
    _, page = attached.host.resolve_target(None)
    await _run(attached, "navigate", url=page.url)

    response = await attached.dispatch({"id": 6, "cmd": "clickRef", "args": {"ref": ref}})
    assert response["ok"] is False
    assert response["code"] == "NotFound"
