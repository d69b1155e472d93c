"""Channel ABC: one duplex JSON message stream to an external party.

The relay talks to both sides (telephony and the speech AI) through this
interface, so the controller never sees a transport object.  Concrete
channels only move text frames; JSON encoding, decoding and the single-use
guarantee of ``messages()`` live here.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from relay.errors import MalformedMessageError

LOGGER = logging.getLogger(__name__)


def encode_frame(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))


def decode_frame(raw: str | bytes) -> dict[str, Any]:
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedMessageError(f"Frame is not valid JSON: {exc}", raw=raw) from exc
    if not isinstance(message, dict):
        raise MalformedMessageError("Frame is not a JSON object", raw=raw)
    return message


class Channel(ABC):
    """Abstract duplex message channel.

    ``messages()`` yields decoded inbound messages in arrival order and can be
    consumed only once per connection.  Transport failures surface as
    ``ChannelError``; frames that do not decode are logged and skipped.
    """

    name: str = "channel"

    def __init__(self) -> None:
        self._consumed = False

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while messages can still be sent."""

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Serialize and transmit one message.

        Raises ``ChannelError`` if the channel is closed or the transport fails.
        """

    @abstractmethod
    def _receive(self) -> AsyncIterator[str | bytes]:
        """Yield raw inbound frames until the peer or ``close()`` ends the stream."""

    @abstractmethod
    async def close(self) -> None:
        """Tear down the connection. Safe to call multiple times."""

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        if self._consumed:
            raise RuntimeError(f"{self.name} channel messages were already consumed")
        self._consumed = True

        async for raw in self._receive():
            try:
                message = decode_frame(raw)
            except MalformedMessageError as exc:
                LOGGER.warning("Dropping %s frame: %s", self.name, exc.detail)
                continue
            yield message
