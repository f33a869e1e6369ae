"""Asyncio daemon server for pagedriver.

Starts the browser host and a :class:`~pagedriver.dispatcher.Dispatcher`, then
serves command envelopes over a Unix domain socket using line-delimited JSON.
A connection may send any number of envelopes; each gets exactly one response
line with the same ``id``. Two commands are handled here rather than by the
dispatcher:

``subscribe``
    Keeps the connection open and streams every status and recording event
    as its own JSON line until the client hangs up.
``shutdown``
    Answers, then stops the server and closes the browser.

The server is started as a background daemon process by ``start_daemon``
(called from ``client.py``).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any

from pagedriver.config import DriverConfig
from pagedriver.dispatcher import Dispatcher
from pagedriver.host import BrowserHost
from pagedriver.runtime import SessionPaths

logger = logging.getLogger(__name__)


def _encode(message: dict[str, Any]) -> bytes:
    return json.dumps(message).encode() + b"\n"


async def _stream_events(
    dispatcher: Dispatcher,
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    request_id: Any,
) -> None:
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
    dispatcher.subscribe(queue.put_nowait)
    try:
        writer.write(_encode({"id": request_id, "ok": True, "result": dispatcher.status()}))
        await writer.drain()
        hangup = asyncio.ensure_future(reader.read())
        while not hangup.done():
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, hangup}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                break
            writer.write(_encode(getter.result()))
            await writer.drain()
        hangup.cancel()
    finally:
        dispatcher.unsubscribe(queue.put_nowait)


async def handle_connection(
    dispatcher: Dispatcher,
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    shutdown: asyncio.Event,
) -> None:
    try:
        while not shutdown.is_set():
            data = await reader.readline()
            if not data:
                break

            try:
                envelope = json.loads(data.decode())
            except ValueError as exc:
                writer.write(_encode({"id": None, "ok": False, "error": f"Invalid JSON: {exc}"}))
                await writer.drain()
                continue

            cmd = envelope.get("cmd", "")
            logger.debug(f"Received command: {cmd} args={envelope.get('args')}")

            if cmd == "subscribe":
                await _stream_events(dispatcher, reader, writer, envelope.get("id"))
                break
            if cmd == "shutdown":
                writer.write(_encode({"id": envelope.get("id"), "ok": True, "result": {}}))
                await writer.drain()
                logger.info("Shutdown command received, stopping server")
                shutdown.set()
                break

            response = await dispatcher.dispatch(envelope)
            writer.write(_encode(response))
            await writer.drain()
    except (ConnectionResetError, BrokenPipeError):
        logger.debug("Client went away")
    except Exception:
        logger.exception("Unhandled error in handle_connection")
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionResetError, BrokenPipeError):
            pass


async def run_server(session_name: str, config_dict: dict[str, Any]) -> None:
    """Main daemon entry point. Starts the browser and the Unix socket server."""
    config = DriverConfig(**config_dict)
    paths = SessionPaths(session_name)
    paths.write_config(config.model_dump_json(indent=2))

    host = BrowserHost(config, session_name)
    await host.start()
    dispatcher = Dispatcher(host, config)
    shutdown = asyncio.Event()

    socket_path = paths.socket
    socket_path.unlink(missing_ok=True)

    async def _on_client(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await handle_connection(dispatcher, reader, writer, shutdown)

    server = await asyncio.start_unix_server(_on_client, path=str(socket_path))
    paths.write_pid(os.getpid())
    logger.info(f"Server listening on {socket_path}")

    try:
        async with server:
            await shutdown.wait()
    finally:
        logger.info("Server stopped, cleaning up session")
        await dispatcher.close()
        await host.stop()
        paths.clear_runtime_files()


def _setup_logging(session_name: str) -> None:
    """Configure logging for the daemon process.

    Writes to ``~/.pagedriver/sessions/<name>/daemon.log`` and redirects
    *stdout*/*stderr* there so stray prints and tracebacks land in the same file.
    """
    log_path = SessionPaths(session_name).log_file
    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    sys.stdout = open(log_path, "a", encoding="utf-8")  # noqa: SIM115
    sys.stderr = sys.stdout


def start_daemon(session_name: str, config_dict: dict[str, Any] | str) -> None:
    """Entry point for the daemon subprocess. Called by client.py."""
    _setup_logging(session_name)
    logger.info(f"Daemon starting for session {session_name!r} (pid={os.getpid()})")
    parsed: dict[str, Any] = (
        json.loads(config_dict) if isinstance(config_dict, str) else config_dict
    )
    try:
        asyncio.run(run_server(session_name, parsed))
    except Exception:
        logger.exception("Daemon crashed")
        raise
