"""
Typed errors raised by the SDK.

Callers can catch a specific failure mode or the base ``FlexError``.
Absent entities are never errors: visitors return ``None`` for them, and a
reverted simulation comes back as ``VMOutput(reverted=True)``.
"""

from __future__ import annotations

from typing import Optional


class FlexError(RuntimeError):
    exit_code = 1


class BadParameterError(FlexError):
    """Malformed request. Caller error, never retried."""

    exit_code = 2


class RejectedError(FlexError):
    """The node or the wallet refused to execute the request."""

    exit_code = 3


class TransportError(FlexError):
    """Network failure, 5xx reply, or a body that could not be decoded."""

    exit_code = 4

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DriverClosedError(FlexError):
    """The driver was closed. Permanent, nothing can be retried."""

    exit_code = 5


__all__ = [
    "FlexError",
    "BadParameterError",
    "RejectedError",
    "TransportError",
    "DriverClosedError",
]
