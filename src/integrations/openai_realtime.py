"""AI side of the relay: an OpenAI Realtime WebSocket session as a Channel."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError
from websockets.protocol import State

from config.settings import Settings
from relay.channel import Channel, encode_frame
from relay.errors import ChannelError

LOGGER = logging.getLogger(__name__)


class RealtimeChannel(Channel):
    """Channel over an open ``websockets`` client connection."""

    name = "ai"

    def __init__(self, connection: Any) -> None:
        super().__init__()
        self._conn = connection
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed and self._conn.state is State.OPEN

    async def _receive(self) -> AsyncIterator[str | bytes]:
        try:
            async for raw in self._conn:
                yield raw
        except ConnectionClosedError as exc:
            if not self._closed:
                raise ChannelError("Realtime connection dropped", cause=exc) from exc
        LOGGER.info("Disconnected from OpenAI Realtime API")

    async def send(self, message: dict[str, Any]) -> None:
        if not self.is_open:
            raise ChannelError("Realtime connection is closed")
        try:
            await self._conn.send(encode_frame(message))
        except ConnectionClosed as exc:
            raise ChannelError("Realtime send failed", cause=exc) from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._conn.close()


async def connect_realtime(settings: Settings) -> RealtimeChannel:
    """Open a Realtime session with the configured model and credentials."""

    if not settings.openai_api_key:
        raise ChannelError("OPENAI_API_KEY is not configured")

    url = settings.realtime_ws_url()
    try:
        connection = await websockets.connect(
            url,
            additional_headers={"Authorization": f"Bearer {settings.openai_api_key}"},
            ping_interval=20,
            ping_timeout=20,
        )
    except (OSError, websockets.InvalidHandshake) as exc:
        raise ChannelError("Could not connect to OpenAI Realtime API", cause=exc) from exc

    LOGGER.info("Connected to OpenAI Realtime API (%s)", settings.openai_realtime_model)
    return RealtimeChannel(connection)
