"""Relay-specific exceptions.

These exceptions are safe to import from API layers without opening any connection.
"""

from __future__ import annotations


class RelayError(Exception):
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ChannelError(RelayError):
    """Transport-level send/receive failure; tears the owning session down."""

    default_detail = "Channel transport failed."

    def __init__(self, detail: str | None = None, *, cause: BaseException | None = None) -> None:
        super().__init__(detail)
        self.cause = cause


class MalformedMessageError(RelayError):
    """A received frame is not a recognized message; it is logged and dropped."""

    default_detail = "Malformed message."

    def __init__(self, detail: str | None = None, *, raw: object = None) -> None:
        super().__init__(detail)
        self.raw = raw


class ProtocolViolation(RelayError):
    default_detail = "Message is meaningless in the current relay state."
