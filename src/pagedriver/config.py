from __future__ import annotations

import json
import os
import shutil
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

RESTRICTED_PREFIXES = [
    "chrome://",
    "chrome-extension://",
    "devtools://",
    "edge://",
    "about:",
]


def _default_launch_options() -> dict:
    opts: dict = {"headless": False, "chromium_sandbox": True}
    system_chromium = shutil.which("chromium") or shutil.which("chromium-browser")
    if system_chromium:
        opts["executable_path"] = system_chromium
    return opts


class BrowserConfig(BaseModel):
    browser_name: Literal["chromium", "firefox", "webkit"] = "chromium"
    isolated: bool = False
    user_data_dir: str | None = None
    launch_options: dict = Field(default_factory=_default_launch_options)
    context_options: dict = Field(default_factory=lambda: {"no_viewport": True})
    cdp_endpoint: str | None = None
    cdp_headers: dict[str, str] = Field(default_factory=dict)
    cdp_timeout: int = 30000
    init_page: list[str] = Field(default_factory=list)


class TimeoutsConfig(BaseModel):
    """All values in milliseconds."""

    command: int = 30000
    navigation: int = 30000
    page_ready: int = 10000
    page_ready_settle: int = 200
    wait: int = 30000
    wait_retry: int = 500
    wait_min_attempt: int = 1000
    exists: int = 1000
    poll: int = 100
    inject_settle: int = 100


class StabilityConfig(BaseModel):
    settle_ms: int = 100
    poll_ms: int = 50
    window_ms: int = 1000
    tolerance_px: float = 1.0


class ExtractionConfig(BaseModel):
    max_length: int = 50000
    min_score: float = 500
    min_words: int = 100
    max_link_density: float = 0.3


class RecordingConfig(BaseModel):
    scroll_quiet_ms: int = 150
    scroll_threshold_px: int = 50
    pump_interval_ms: int = 100


class EmbedConfig(BaseModel):
    enabled: bool = True
    api_url: str = "http://localhost:9876"
    timeout: float = 10.0


class DriverConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PAGEDRIVER_",
        env_nested_delimiter="__",
    )

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    output_dir: str = ".pagedriver"
    restricted_prefixes: list[str] = Field(
        default_factory=lambda: list(RESTRICTED_PREFIXES)
    )
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    stability: StabilityConfig = Field(default_factory=StabilityConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    recording: RecordingConfig = Field(default_factory=RecordingConfig)
    embed: EmbedConfig = Field(default_factory=EmbedConfig)

    @field_validator("restricted_prefixes", mode="before")
    @classmethod
    def parse_restricted_prefixes(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return _parse_semicolon_list(v)
        return v


def _parse_semicolon_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(";") if item.strip()]


def _parse_viewport_size(value: str) -> dict[str, int]:
    """Parse a 'WxH' string into a viewport size dict."""
    parts = value.lower().split("x")
    if len(parts) != 2:
        raise ValueError(
            f"PAGEDRIVER_VIEWPORT_SIZE must be in 'WxH' format, got '{value}'"
        )
    return {"width": int(parts[0]), "height": int(parts[1])}


def _is_truthy(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


def apply_env_overrides(config: DriverConfig) -> DriverConfig:
    """Read flat PAGEDRIVER_* convenience variables and apply them as overrides.

    These don't map onto the nested delimiter convention, so they are handled
    manually here.
    """

    # PAGEDRIVER_HEADLESS -> browser.launch_options.headless
    headless = os.environ.get("PAGEDRIVER_HEADLESS")
    if headless is not None:
        config.browser.launch_options["headless"] = _is_truthy(headless)

    # PAGEDRIVER_BROWSER_CHANNEL -> browser.launch_options.channel
    channel = os.environ.get("PAGEDRIVER_BROWSER_CHANNEL")
    if channel is not None:
        config.browser.launch_options["channel"] = channel

    # PAGEDRIVER_VIEWPORT_SIZE -> browser.context_options.viewport
    viewport_size = os.environ.get("PAGEDRIVER_VIEWPORT_SIZE")
    if viewport_size is not None:
        config.browser.context_options["viewport"] = _parse_viewport_size(viewport_size)
        config.browser.context_options.pop("no_viewport", None)

    # PAGEDRIVER_EXECUTABLE_PATH -> browser.launch_options.executable_path
    executable_path = os.environ.get("PAGEDRIVER_EXECUTABLE_PATH")
    if executable_path is not None:
        config.browser.launch_options["executable_path"] = executable_path

    # PAGEDRIVER_CDP_ENDPOINT -> browser.cdp_endpoint
    cdp_endpoint = os.environ.get("PAGEDRIVER_CDP_ENDPOINT")
    if cdp_endpoint is not None:
        config.browser.cdp_endpoint = cdp_endpoint

    # PAGEDRIVER_NO_SANDBOX -> browser.launch_options.chromium_sandbox = False
    no_sandbox = os.environ.get("PAGEDRIVER_NO_SANDBOX")
    if no_sandbox is not None and _is_truthy(no_sandbox):
        config.browser.launch_options["chromium_sandbox"] = False

    # PAGEDRIVER_INIT_PAGE -> browser.init_page (semicolon-separated)
    init_page = os.environ.get("PAGEDRIVER_INIT_PAGE")
    if init_page is not None:
        config.browser.init_page = _parse_semicolon_list(init_page)

    # PAGEDRIVER_COMMAND_TIMEOUT -> timeouts.command
    command_timeout = os.environ.get("PAGEDRIVER_COMMAND_TIMEOUT")
    if command_timeout is not None:
        config.timeouts.command = int(command_timeout)

    # PAGEDRIVER_API_URL -> embed.api_url
    api_url = os.environ.get("PAGEDRIVER_API_URL")
    if api_url is not None:
        config.embed.api_url = api_url.rstrip("/")

    return config


def get_version() -> str:
    """Return the package version string."""
    try:
        from importlib.metadata import version

        return version("pagedriver")
    except Exception:
        return "0.1.0"


def load_config(config_path: str | None = None) -> DriverConfig:
    """Load driver configuration from a JSON file and/or environment variables.

    Priority (highest to lowest):
        1. PAGEDRIVER_* environment variables (pydantic-settings + apply_env_overrides)
        2. Explicitly provided config_path JSON file
        3. Default config file at .pagedriver/config.json in cwd
        4. Built-in defaults
    """
    file_values: dict = {}

    if config_path is not None:
        config_file = Path(config_path)
        if config_file.is_file():
            file_values = json.loads(config_file.read_text(encoding="utf-8"))
    else:
        default_config = Path.cwd() / ".pagedriver" / "config.json"
        if default_config.is_file():
            file_values = json.loads(default_config.read_text(encoding="utf-8"))

    config = DriverConfig(**file_values)
    return apply_env_overrides(config)
