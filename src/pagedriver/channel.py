"""Correlated request/response channel between the dispatcher and the page agent.

Requests carry an integer ``id``; the agent answers with a message carrying
the same ``responseId``. A reply carrying ``failure`` is raised as
:class:`~pagedriver.errors.DispatchFailure`; everything else is returned as
data. Each id completes at most once: the first of reply, failure or timeout
wins and anything arriving later is dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

from pagedriver.errors import CommandTimeout, DispatchFailure

logger = logging.getLogger(__name__)


class PendingRequestTable:
    def __init__(self) -> None:
        self._pending: dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: int) -> bool:
        return request_id in self._pending

    def open(self) -> tuple[int, asyncio.Future]:
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        return request_id, future

    def resolve(self, request_id: int, result: Any) -> bool:
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            logger.debug(f"Dropping late reply for request {request_id}")
            return False
        future.set_result(result)
        return True

    def reject(self, request_id: int, exc: BaseException) -> bool:
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            return False
        future.set_exception(exc)
        return True

    def discard(self, request_id: int) -> bool:
        return self._pending.pop(request_id, None) is not None


class AgentChannel:
    """Message channel to one page agent.

    The agent reads request messages from :attr:`inbox` and answers through
    :meth:`deliver`.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self.pending = PendingRequestTable()
        self.inbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.closed = False

    async def request(
        self, action: str, timeout: float | None = None, **params: Any
    ) -> dict[str, Any]:
        if self.closed:
            raise DispatchFailure("Page agent is not available")

        request_id, future = self.pending.open()
        self.inbox.put_nowait({"id": request_id, "action": action, **params})
        try:
            reply = await asyncio.wait_for(future, timeout or self.timeout)
        except asyncio.TimeoutError:
            self.pending.discard(request_id)
            raise CommandTimeout(f"Page agent did not answer {action!r} in time") from None

        if "failure" in reply:
            raise DispatchFailure(reply["failure"])
        return reply

    def deliver(self, message: dict[str, Any]) -> None:
        request_id = message.get("responseId")
        if request_id is None:
            logger.debug(f"Ignoring uncorrelated agent message: {message}")
            return
        result = {k: v for k, v in message.items() if k != "responseId"}
        self.pending.resolve(request_id, result)

    def close(self) -> None:
        """Stop accepting requests; requests already sent run out their timeout."""
        self.closed = True
