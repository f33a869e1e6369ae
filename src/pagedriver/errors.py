"""Error taxonomy shared by the dispatcher, the page agent and the engines.

Every error carries a short ``code`` that is sent over the wire next to the
human readable message.
"""

from __future__ import annotations


class DriverError(Exception):
    code = "DriverError"

    def to_response(self) -> dict:
        return {"ok": False, "error": str(self), "code": self.code}


class RestrictedTarget(DriverError):
    """The target URL belongs to a privileged page the driver may not touch."""

    code = "RestrictedTarget"


class NotFound(DriverError):
    code = "NotFound"


class CommandTimeout(DriverError):
    code = "Timeout"


class DispatchFailure(DriverError):
    """The page agent could not be reached or replied with an error."""

    code = "DispatchFailure"


class UnknownCommand(DriverError):
    code = "UnknownCommand"


class NotConnected(DriverError):
    code = "NotConnected"
