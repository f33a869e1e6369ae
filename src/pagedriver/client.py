"""Client side of the daemon protocol.

:class:`DaemonClient` talks to one daemon in line-delimited JSON envelopes::

    >>> DaemonClient("work").request("click", {"selector": "#go"})
    {'id': 1, 'ok': True, 'result': {'clicked': '#go', 'x': 120, 'y': 48}}

Driver errors come back as the daemon sent them, with a ``code``. Transport
problems never raise; they are reported as ``{"ok": False, "error": ...}``
without a ``code``.

The module also spawns daemons and manages their lifecycle for the CLI.
"""

from __future__ import annotations

import itertools
import json
import os
import shutil
import signal
import socket
import subprocess
import sys
import time
from collections.abc import Iterator
from typing import Any

from pagedriver.runtime import SessionPaths, known_sessions

_envelope_ids = itertools.count(1)


def _failure(message: str) -> dict[str, Any]:
    return {"ok": False, "error": message}


def _read_line(sock: socket.socket, chunk_size: int = 65536) -> bytes:
    """Receive until the first newline or until the peer closes."""
    data = b""
    while b"\n" not in data:
        chunk = sock.recv(chunk_size)
        if not chunk:
            break
        data += chunk
    return data.strip()


class DaemonClient:
    def __init__(self, session_name: str, timeout: float = 120.0) -> None:
        self.session_name = session_name
        self.paths = SessionPaths(session_name)
        self.timeout = timeout

    def _envelope(self, cmd: str, args: dict | None) -> bytes:
        envelope = {"id": next(_envelope_ids), "cmd": cmd, "args": args or {}}
        return json.dumps(envelope).encode() + b"\n"

    def _not_running(self) -> dict[str, Any]:
        return _failure(
            f"Session '{self.session_name}' is not running. "
            "Use 'start' to launch a daemon."
        )

    def request(self, cmd: str, args: dict | None = None) -> dict[str, Any]:
        """Send one envelope and return the daemon's correlated response."""
        if not self.paths.socket.exists():
            return self._not_running()

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(self.timeout)
            sock.connect(str(self.paths.socket))
            sock.sendall(self._envelope(cmd, args))
            line = _read_line(sock)
        except ConnectionRefusedError:
            self.paths.clear_runtime_files()
            return _failure(
                f"Session '{self.session_name}' daemon is not responding. "
                "Removed its stale socket."
            )
        except socket.timeout:
            return _failure(f"No reply to {cmd!r} within {self.timeout}s (timed out)")
        except OSError as exc:
            return _failure(f"Connection error: {exc}")
        finally:
            sock.close()

        if not line:
            return _failure("Daemon closed the connection without replying")
        try:
            return json.loads(line)
        except ValueError as exc:
            return _failure(f"Malformed reply from daemon: {exc}")

    def events(self) -> Iterator[dict[str, Any]]:
        """Subscribe and yield each line the daemon streams back.

        The first item acknowledges the subscription and carries the current
        status; the rest are status and recording events. The iterator ends
        when the daemon goes away.
        """
        if not self.paths.socket.exists():
            yield self._not_running()
            return

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(str(self.paths.socket))
            sock.sendall(self._envelope("subscribe", None))
            with sock.makefile("r", encoding="utf-8") as lines:
                for line in lines:
                    if line.strip():
                        yield json.loads(line)
        except OSError as exc:
            yield _failure(f"Connection error: {exc}")
        finally:
            sock.close()

    def shutdown(self) -> dict[str, Any]:
        return self.request("shutdown")


def send_command(
    session_name: str, cmd: str, args: dict | None = None, timeout: float = 120.0
) -> dict[str, Any]:
    return DaemonClient(session_name, timeout).request(cmd, args)


def stream_events(session_name: str) -> Iterator[dict[str, Any]]:
    return DaemonClient(session_name).events()


# ---------------------------------------------------------------------------
# Daemon lifecycle
# ---------------------------------------------------------------------------


def spawn_daemon(session_name: str, config_dict: dict, timeout: float = 15.0) -> bool:
    """Start a detached daemon for *session_name* unless one is already running.

    The child runs ``pagedriver.server.start_daemon`` in a new session and
    logs to its own ``daemon.log``. Returns ``True`` once the daemon's socket
    appears; ``False`` if the child exits first or *timeout* runs out.
    """
    paths = SessionPaths(session_name)
    if paths.is_running():
        return True
    paths.clear_runtime_files()

    bootstrap = (
        "from pagedriver.server import start_daemon; "
        f"start_daemon({session_name!r}, {json.dumps(config_dict)!r})"
    )
    proc = subprocess.Popen(
        [sys.executable, "-c", bootstrap],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if paths.socket.exists():
            return True
        if proc.poll() is not None:
            return False
        time.sleep(0.1)
    return False


def list_sessions() -> list[dict[str, Any]]:
    return [paths.describe() for paths in known_sessions()]


def stop_all_sessions() -> list[dict[str, Any]]:
    """Ask every live daemon to shut down and clear the files of dead ones."""
    results: list[dict[str, Any]] = []
    for paths in known_sessions():
        if paths.is_alive():
            response = DaemonClient(paths.name).shutdown()
            results.append({"name": paths.name, **response})
        else:
            paths.clear_runtime_files()
            results.append({"name": paths.name, "ok": True, "output": "Cleaned up stale session"})
    return results


def _terminate(pid: int) -> dict[str, Any]:
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        return {"ok": True, "output": "Already dead"}
    except PermissionError:
        return _failure(f"Permission denied killing PID {pid}")
    return {"ok": True, "output": f"Killed PID {pid}"}


def kill_all_sessions() -> list[dict[str, Any]]:
    """SIGTERM every live daemon; runtime files are cleared for all sessions."""
    results: list[dict[str, Any]] = []
    for paths in known_sessions():
        pid = paths.read_pid()
        if pid is not None and paths.is_alive():
            results.append({"name": paths.name, **_terminate(pid)})
        paths.clear_runtime_files()
    return results


def delete_session_data(session_name: str) -> dict[str, Any]:
    """Remove a stopped session's directory, browser profile included."""
    paths = SessionPaths(session_name)
    if paths.is_alive():
        return _failure(f"Session '{session_name}' is still running. Stop it first.")
    try:
        shutil.rmtree(paths.directory)
    except OSError as exc:
        return _failure(str(exc))
    return {"ok": True, "output": f"Deleted session data for '{session_name}'"}
