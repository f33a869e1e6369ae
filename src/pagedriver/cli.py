"""Argparse-based CLI for pagedriver.

Daemon commands are sent to the session's daemon as command envelopes;
session-management commands (``list``, ``stop-all``, ``kill-all``,
``delete-data``, ``logs``, ``events``) are handled here.
"""

from __future__ import annotations

import argparse
import json
import subprocess
import sys

from pagedriver.client import (
    delete_session_data,
    kill_all_sessions,
    list_sessions,
    send_command,
    spawn_daemon,
    stop_all_sessions,
    stream_events,
)
from pagedriver.config import get_version, load_config
from pagedriver.runtime import SessionPaths, resolve_session_name

_CLIENT_SIDE = ("list", "stop-all", "kill-all", "delete-data", "logs", "events", "start")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _args_to_dict(
    args: argparse.Namespace,
    exclude: tuple[str, ...] = ("session", "config", "command", "version"),
) -> dict:
    """Convert argparse Namespace to dict, excluding global/meta keys."""
    return {k: v for k, v in vars(args).items() if k not in exclude and v is not None}


def _format_result(command: str, result: dict) -> str:
    if command == "aria-snapshot":
        return result.get("snapshot", "")
    if command == "screenshot":
        return f"Screenshot saved to {result.get('path')}"
    return json.dumps(result, indent=2)


# ---------------------------------------------------------------------------
# Subparser registration
# ---------------------------------------------------------------------------


def _register_subcommands(subparsers: argparse._SubParsersAction) -> None:
    """Register every subcommand on *subparsers*."""

    # ── Daemon ─────────────────────────────────────────────────────────

    p = subparsers.add_parser("start", help="Start a browser daemon")
    p.add_argument("--headless", action="store_true", default=False, help="Run headless")
    p.add_argument("--browser", default=None, help="Browser channel to use")
    p.add_argument("--profile", default=None, help="Path to user data directory")
    p.add_argument("--cdp-endpoint", default=None, help="Attach to a running browser over CDP")
    p.add_argument(
        "--isolated", action="store_true", default=False, help="Use an in-memory profile"
    )

    subparsers.add_parser("stop", help="Stop the daemon and close its browser")

    # ── Session ────────────────────────────────────────────────────────

    p = subparsers.add_parser("connect", help="Attach to a target (default: active tab)")
    p.add_argument("target_id", nargs="?", type=int, default=None, help="Target id")

    subparsers.add_parser("disconnect", help="Release the current target")
    subparsers.add_parser("status", help="Show attachment status")
    subparsers.add_parser("targets", help="List the browser's targets")

    # ── Navigation & input ─────────────────────────────────────────────

    p = subparsers.add_parser("navigate", help="Navigate to a URL")
    p.add_argument("url", help="URL to navigate to")

    p = subparsers.add_parser("click", help="Click an element")
    p.add_argument("selector", help="CSS or :has-text() selector")

    p = subparsers.add_parser("click-ref", help="Click an element by snapshot ref")
    p.add_argument("ref", type=int, help="Ref from the latest aria snapshot")

    for name, target_help, target_type in (
        ("type", "CSS or :has-text() selector", str),
        ("type-ref", "Ref from the latest aria snapshot", int),
    ):
        p = subparsers.add_parser(name, help="Type text into an element")
        p.add_argument("ref" if name == "type-ref" else "selector", type=target_type, help=target_help)
        p.add_argument("text", help="Text to type")
        p.add_argument(
            "--no-clear",
            dest="clear",
            action="store_false",
            default=True,
            help="Keep the existing value",
        )
        p.add_argument(
            "--submit", action="store_true", default=False, help="Press Enter after typing"
        )

    p = subparsers.add_parser("hover", help="Move the mouse over an element")
    p.add_argument("selector", help="CSS or :has-text() selector")

    p = subparsers.add_parser("scroll", help="Scroll with the mouse wheel")
    p.add_argument(
        "direction", nargs="?", default="down", choices=["up", "down", "left", "right"]
    )
    p.add_argument("--amount", type=int, default=300, help="Pixels (default: 300)")
    p.add_argument("--selector", default=None, help="Scroll over this element")

    p = subparsers.add_parser("press-key", help="Press a key or combination (e.g. Ctrl+A)")
    p.add_argument("key", help="Key name or combination")
    p.add_argument("--selector", default=None, help="Focus this element first")

    p = subparsers.add_parser("focus", help="Focus an element, or the tab itself")
    p.add_argument("selector", nargs="?", default=None)

    # ── Waiting ────────────────────────────────────────────────────────

    p = subparsers.add_parser("wait", help="Wait for an element or a fixed time")
    p.add_argument("selector", nargs="?", default=None)
    p.add_argument("--ms", type=int, default=None, help="Sleep this long; takes precedence over a selector")
    p.add_argument("--timeout", type=int, default=None, help="Timeout in ms")

    p = subparsers.add_parser("exists", help="Check whether an element exists")
    p.add_argument("selector")
    p.add_argument("--timeout", type=int, default=None, help="Timeout in ms")

    # ── Introspection ──────────────────────────────────────────────────

    p = subparsers.add_parser("extract", help="Extract an element's text")
    p.add_argument("selector")

    p = subparsers.add_parser("extract-all", help="Extract and join the text of all matches")
    p.add_argument("selector")
    p.add_argument("--separator", default=None, help="Join string (default: ', ')")

    subparsers.add_parser("screenshot", help="Capture the viewport as PNG")
    subparsers.add_parser("snapshot", help="Depth-limited DOM tree as JSON")

    p = subparsers.add_parser("aria-snapshot", help="Accessibility snapshot with refs")
    p.add_argument(
        "--include-content",
        action="store_true",
        default=False,
        help="Include the page's main content as markdown",
    )

    subparsers.add_parser("capture-selectors", help="Summarize usable selectors on the page")

    # ── Recording ──────────────────────────────────────────────────────

    subparsers.add_parser("recording-start", help="Start recording user interactions")
    subparsers.add_parser("recording-stop", help="Stop recording")

    # ── Embed configs ──────────────────────────────────────────────────

    p = subparsers.add_parser("embed-configs", help="Embed workflows for a page")
    p.add_argument("--url", default=None, help="Page URL (default: attached page)")

    p = subparsers.add_parser("embed-cache-clear", help="Clear cached embed workflows")
    p.add_argument("--domain", default=None, help="Only this domain")

    # ── Session management (client-side) ───────────────────────────────

    subparsers.add_parser("list", help="List all sessions")
    subparsers.add_parser("events", help="Stream status and recording events")
    subparsers.add_parser("stop-all", help="Gracefully stop all daemons")
    subparsers.add_parser("kill-all", help="Force-kill all daemons")
    subparsers.add_parser("delete-data", help="Delete session data directory")

    p = subparsers.add_parser("logs", help="Show daemon log for a session")
    p.add_argument(
        "-n",
        "--lines",
        type=int,
        default=50,
        help="Number of lines to show (default: 50, 0 for all)",
    )
    p.add_argument(
        "-f", "--follow", action="store_true", help="Follow log output (like tail -f)"
    )


# ---------------------------------------------------------------------------
# Client-side commands
# ---------------------------------------------------------------------------


def _run_client_side(args: argparse.Namespace, session_name: str) -> None:
    if args.command == "start":
        config = load_config(args.config)
        if args.headless:
            config.browser.launch_options["headless"] = True
            config.browser.context_options.pop("no_viewport", None)
        if args.browser is not None:
            config.browser.launch_options["channel"] = args.browser
        if args.profile is not None:
            config.browser.user_data_dir = args.profile
        if args.cdp_endpoint is not None:
            config.browser.cdp_endpoint = args.cdp_endpoint
        if args.isolated:
            config.browser.isolated = True

        if not spawn_daemon(session_name, config.model_dump()):
            print("Failed to start browser daemon. Check logs.", file=sys.stderr)
            sys.exit(1)
        print(f"Daemon '{session_name}' running.")
        return

    if args.command == "list":
        sessions = list_sessions()
        if not sessions:
            print("No sessions found.")
            return
        print("### Daemons")
        for s in sessions:
            status = "running" if s["alive"] else "stopped"
            print(f"- {s['name']}:")
            print(f"  - status: {status}")
            cfg = s.get("config")
            if cfg:
                browser_cfg = cfg.get("browser", {})
                headed = not browser_cfg.get("launch_options", {}).get("headless", False)
                print(f"  - browser-type: {browser_cfg.get('browser_name', 'chromium')}")
                if browser_cfg.get("cdp_endpoint"):
                    print(f"  - cdp-endpoint: {browser_cfg['cdp_endpoint']}")
                print(f"  - headed: {str(headed).lower()}")
        return

    if args.command == "events":
        try:
            for event in stream_events(session_name):
                if event.get("ok") is False:
                    print(event.get("error", "Unknown error"), file=sys.stderr)
                    sys.exit(1)
                print(json.dumps(event), flush=True)
        except KeyboardInterrupt:
            pass
        return

    if args.command in ("stop-all", "kill-all"):
        results = stop_all_sessions() if args.command == "stop-all" else kill_all_sessions()
        for r in results:
            if r["ok"]:
                print(r.get("output") or f"Stopped session '{r['name']}'")
            else:
                print(
                    f"Failed to stop session '{r['name']}': {r.get('error', '')}",
                    file=sys.stderr,
                )
        return

    if args.command == "delete-data":
        result = delete_session_data(session_name)
        if result["ok"]:
            print(result["output"])
        else:
            print(result["error"], file=sys.stderr)
            sys.exit(1)
        return

    if args.command == "logs":
        log_path = SessionPaths(session_name).log_file
        if not log_path.exists():
            print(f"No log file found for session '{session_name}'.", file=sys.stderr)
            print(f"Expected: {log_path}", file=sys.stderr)
            sys.exit(1)
        if args.follow:
            try:
                subprocess.run(["tail", "-f", str(log_path)], check=False)
            except KeyboardInterrupt:
                pass
        elif args.lines == 0:
            print(log_path.read_text(encoding="utf-8"), end="")
        else:
            subprocess.run(["tail", "-n", str(args.lines), str(log_path)], check=False)
        return


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate handler."""

    parser = argparse.ArgumentParser(
        prog="pagedriver",
        description="Drive a browser page through a per-session automation daemon",
    )

    parser.add_argument("-s", "--session", default=None, help="Session name")
    parser.add_argument("--config", default=None, help="Path to config file")
    parser.add_argument("-v", "--version", action="store_true", help="Print version")

    subparsers = parser.add_subparsers(dest="command")
    _register_subcommands(subparsers)

    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    if args.version:
        print(get_version())
        return

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    session_name = resolve_session_name(args.session)

    if args.command in _CLIENT_SIDE:
        _run_client_side(args, session_name)
        return

    cmd_name = "shutdown" if args.command == "stop" else args.command
    result = send_command(session_name, cmd_name, _args_to_dict(args))

    if result["ok"]:
        output = _format_result(args.command, result.get("result") or {})
        if output:
            print(output)
    else:
        code = result.get("code")
        prefix = f"[{code}] " if code else ""
        print(f"{prefix}{result.get('error', 'Unknown error')}", file=sys.stderr)
        sys.exit(1)
