"""Telephony side of the relay: a Twilio Media Streams WebSocket as a Channel.

Protocol reference:
  https://www.twilio.com/docs/voice/media-streams/websocket-messages
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from relay.channel import Channel, encode_frame
from relay.errors import ChannelError

LOGGER = logging.getLogger(__name__)


class TwilioMediaStreamChannel(Channel):
    """Channel over an accepted Twilio Media Streams WebSocket."""

    name = "telephony"

    def __init__(self, websocket: WebSocket) -> None:
        super().__init__()
        self._ws = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    async def _receive(self) -> AsyncIterator[str]:
        while not self._closed:
            try:
                raw = await self._ws.receive_text()
            except WebSocketDisconnect as exc:
                LOGGER.info("Twilio media stream disconnected (code=%s)", exc.code)
                break
            except Exception as exc:
                if self._closed:
                    break
                raise ChannelError("Twilio media stream receive failed", cause=exc) from exc
            yield raw

    async def send(self, message: dict[str, Any]) -> None:
        if not self.is_open:
            raise ChannelError("Twilio media stream is closed")
        try:
            await self._ws.send_text(encode_frame(message))
        except Exception as exc:
            raise ChannelError("Twilio media stream send failed", cause=exc) from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if (
            self._ws.application_state != WebSocketState.CONNECTED
            or self._ws.client_state == WebSocketState.DISCONNECTED
        ):
            return
        try:
            await self._ws.close()
        except (RuntimeError, OSError) as exc:
            # Peer already went away; nothing left to release.
            LOGGER.debug("Twilio media stream close ignored: %s", exc)
