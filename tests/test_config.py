"""Tests for pagedriver.config module."""

from __future__ import annotations

import json

import pytest

from pagedriver.config import (
    RESTRICTED_PREFIXES,
    BrowserConfig,
    DriverConfig,
    EmbedConfig,
    StabilityConfig,
    TimeoutsConfig,
    _parse_semicolon_list,
    _parse_viewport_size,
    apply_env_overrides,
    load_config,
)


# ---------------------------------------------------------------------------
# Model defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_browser(self):
        browser = BrowserConfig()
        assert browser.browser_name == "chromium"
        assert browser.isolated is False
        assert browser.launch_options["headless"] is False
        assert browser.context_options == {"no_viewport": True}
        assert browser.cdp_endpoint is None

    def test_timeouts(self):
        timeouts = TimeoutsConfig()
        assert timeouts.command == 30000
        assert timeouts.page_ready == 10000
        assert timeouts.wait_retry == 500
        assert timeouts.exists == 1000

    def test_stability(self):
        stability = StabilityConfig()
        assert (stability.settle_ms, stability.poll_ms, stability.window_ms) == (100, 50, 1000)
        assert stability.tolerance_px == 1.0

    def test_embed(self):
        assert EmbedConfig().api_url == "http://localhost:9876"

    def test_driver(self, default_config):
        assert default_config.output_dir == ".pagedriver"
        assert default_config.restricted_prefixes == RESTRICTED_PREFIXES
        assert default_config.extraction.max_length == 50000
        assert default_config.recording.scroll_threshold_px == 50

    def test_restricted_prefixes_from_string(self):
        config = DriverConfig(restricted_prefixes="chrome://; file://")
        assert config.restricted_prefixes == ["chrome://", "file://"]

    def test_model_dump_round_trip(self, config_dict):
        assert DriverConfig(**config_dict).timeouts == TimeoutsConfig()
        assert config_dict["timeouts"]["navigation"] == 30000


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


class TestParsers:
    def test_semicolon_list(self):
        assert _parse_semicolon_list(" a ; ;b;") == ["a", "b"]

    def test_viewport(self):
        assert _parse_viewport_size("1024X768") == {"width": 1024, "height": 768}

    @pytest.mark.parametrize("value", ["1024", "1x2x3"])
    def test_viewport_invalid(self, value):
        with pytest.raises(ValueError, match="WxH"):
            _parse_viewport_size(value)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


class TestEnvOverrides:
    @pytest.mark.parametrize("value, expected", [("1", True), ("yes", True), ("off", False)])
    def test_headless(self, monkeypatch, value, expected):
        monkeypatch.setenv("PAGEDRIVER_HEADLESS", value)
        assert apply_env_overrides(DriverConfig()).browser.launch_options["headless"] is expected

    def test_viewport_replaces_no_viewport(self, monkeypatch):
        monkeypatch.setenv("PAGEDRIVER_VIEWPORT_SIZE", "800x600")
        opts = apply_env_overrides(DriverConfig()).browser.context_options
        assert opts == {"viewport": {"width": 800, "height": 600}}

    def test_channel_and_executable(self, monkeypatch):
        monkeypatch.setenv("PAGEDRIVER_BROWSER_CHANNEL", "chrome")
        monkeypatch.setenv("PAGEDRIVER_EXECUTABLE_PATH", "/opt/chrome")
        opts = apply_env_overrides(DriverConfig()).browser.launch_options
        assert opts["channel"] == "chrome"
        assert opts["executable_path"] == "/opt/chrome"

    def test_no_sandbox(self, monkeypatch):
        monkeypatch.setenv("PAGEDRIVER_NO_SANDBOX", "true")
        assert apply_env_overrides(DriverConfig()).browser.launch_options["chromium_sandbox"] is False

    def test_no_sandbox_false_keeps_default(self, monkeypatch):
        monkeypatch.setenv("PAGEDRIVER_NO_SANDBOX", "0")
        assert apply_env_overrides(DriverConfig()).browser.launch_options["chromium_sandbox"] is True

    def test_init_page(self, monkeypatch):
        monkeypatch.setenv("PAGEDRIVER_INIT_PAGE", "https://a.test;https://b.test")
        assert apply_env_overrides(DriverConfig()).browser.init_page == [
            "https://a.test",
            "https://b.test",
        ]

    def test_cdp_endpoint_and_command_timeout(self, monkeypatch):
        monkeypatch.setenv("PAGEDRIVER_CDP_ENDPOINT", "http://localhost:9222")
        monkeypatch.setenv("PAGEDRIVER_COMMAND_TIMEOUT", "5000")
        config = apply_env_overrides(DriverConfig())
        assert config.browser.cdp_endpoint == "http://localhost:9222"
        assert config.timeouts.command == 5000

    def test_api_url_trailing_slash(self, monkeypatch):
        monkeypatch.setenv("PAGEDRIVER_API_URL", "https://app.test/")
        assert apply_env_overrides(DriverConfig()).embed.api_url == "https://app.test"

    def test_nested_delimiter(self, monkeypatch):
        monkeypatch.setenv("PAGEDRIVER_TIMEOUTS__NAVIGATION", "60000")
        monkeypatch.setenv("PAGEDRIVER_EMBED__ENABLED", "false")
        config = DriverConfig()
        assert config.timeouts.navigation == 60000
        assert config.embed.enabled is False

    def test_nothing_set(self):
        config = apply_env_overrides(DriverConfig())
        assert config.browser.cdp_endpoint is None
        assert "channel" not in config.browser.launch_options


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_explicit_path(self, config_file):
        config = load_config(str(config_file))
        assert config.browser.browser_name == "firefox"
        assert config.browser.isolated is True
        assert config.output_dir == ".custom-output"

    def test_default_path_in_cwd(self, output_dir):
        output_dir.mkdir(parents=True)
        (output_dir / "config.json").write_text(
            json.dumps({"timeouts": {"command": 1234}}), encoding="utf-8"
        )
        assert load_config().timeouts.command == 1234

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "nope.json"))
        assert config.browser.browser_name == "chromium"

    def test_env_beats_file(self, config_file, monkeypatch):
        monkeypatch.setenv("PAGEDRIVER_HEADLESS", "true")
        config = load_config(str(config_file))
        assert config.browser.launch_options["headless"] is True
        assert config.browser.browser_name == "firefox"
