"""Per-session runtime files and the output folder.

A daemon named ``work`` keeps everything it owns in
``~/.pagedriver/sessions/work/``::

    server.sock     Unix socket the daemon listens on
    pid             daemon process id
    daemon.log      daemon log (stdout/stderr redirected here)
    config.json     snapshot of the DriverConfig it was started with
    browser-data/   persistent browser profile, unless isolated

Screenshots go to ``DriverConfig.output_dir``, resolved against the working
directory when relative.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

SESSION_ENV_VAR = "PAGEDRIVER_SESSION"
DEFAULT_SESSION = "default"


def sessions_root() -> Path:
    root = Path.home() / ".pagedriver" / "sessions"
    root.mkdir(parents=True, exist_ok=True)
    return root


@dataclass(frozen=True)
class SessionPaths:
    """Runtime files of one named daemon. The directory is created on access."""

    name: str

    @property
    def directory(self) -> Path:
        path = sessions_root() / self.name
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def socket(self) -> Path:
        return self.directory / "server.sock"

    @property
    def pid_file(self) -> Path:
        return self.directory / "pid"

    @property
    def log_file(self) -> Path:
        return self.directory / "daemon.log"

    @property
    def config_file(self) -> Path:
        return self.directory / "config.json"

    @property
    def profile_dir(self) -> Path:
        return self.directory / "browser-data"

    # -- daemon process ------------------------------------------------------

    def write_pid(self, pid: int) -> None:
        self.pid_file.write_text(str(pid), encoding="utf-8")

    def read_pid(self) -> int | None:
        try:
            return int(self.pid_file.read_text(encoding="utf-8").strip())
        except (FileNotFoundError, ValueError):
            return None

    def is_alive(self) -> bool:
        pid = self.read_pid()
        if pid is None:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Running under another user.
            return True
        return True

    def is_running(self) -> bool:
        """True when the socket is on disk and the daemon process answers signals."""
        return self.socket.exists() and self.is_alive()

    def clear_runtime_files(self) -> None:
        """Remove the socket and pid file; the log, config and profile stay."""
        self.socket.unlink(missing_ok=True)
        self.pid_file.unlink(missing_ok=True)

    # -- config snapshot -----------------------------------------------------

    def write_config(self, config_json: str) -> None:
        self.config_file.write_text(config_json, encoding="utf-8")

    def read_config(self) -> dict[str, Any] | None:
        try:
            return json.loads(self.config_file.read_text(encoding="utf-8"))
        except (FileNotFoundError, json.JSONDecodeError):
            return None

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "alive": self.is_alive(),
            "pid": self.read_pid(),
            "config": self.read_config(),
        }


def known_sessions() -> list[SessionPaths]:
    """Every session directory under the sessions root, sorted by name."""
    return [
        SessionPaths(entry.name)
        for entry in sorted(sessions_root().iterdir())
        if entry.is_dir()
    ]


def resolve_session_name(cli_arg: str | None) -> str:
    """Explicit ``-s`` value, then ``PAGEDRIVER_SESSION``, then ``default``."""
    return cli_arg or os.environ.get(SESSION_ENV_VAR, "").strip() or DEFAULT_SESSION


def output_path(output_dir: str | Path, prefix: str, ext: str) -> Path:
    """A fresh ``{prefix}-{UTC timestamp}.{ext}`` path inside *output_dir*."""
    directory = Path(output_dir)
    if not directory.is_absolute():
        directory = Path.cwd() / directory
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S.%fZ")
    return directory / f"{prefix}-{stamp}.{ext}"
