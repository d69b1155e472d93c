"""Twilio Voice integration.

This module provides:
- Voice webhook (TwiML) that greets the caller and connects a Media Stream.
- The Media Stream WebSocket endpoint, relayed to an OpenAI Realtime session.
"""

from __future__ import annotations

import logging
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response, WebSocket

from config.settings import get_settings
from integrations.openai_realtime import connect_realtime
from integrations.twilio_streaming import TwilioMediaStreamChannel
from relay.session import AiConnector, CallSession

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])

MEDIA_STREAM_PATH = "/media-stream"


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _media_stream_url(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        return _to_ws_url(settings.public_base_url.rstrip("/") + MEDIA_STREAM_PATH)
    # Twilio only connects to secure streams; behind a proxy prefer PUBLIC_BASE_URL.
    host = request.headers.get("host") or request.url.netloc
    return f"wss://{host}{MEDIA_STREAM_PATH}"


def _twiml_connect_stream(*, stream_url: str, greeting: str, ready_prompt: str, voice: str) -> str:
    stream = escape(stream_url)
    say_voice = escape(voice)
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        f"<Say voice=\"{say_voice}\">{escape(greeting)}</Say>"
        "<Pause length=\"1\"/>"
        f"<Say voice=\"{say_voice}\">{escape(ready_prompt)}</Say>"
        "<Connect>"
        f"<Stream url=\"{stream}\" />"
        "</Connect>"
        "</Response>"
    )


def get_ai_connector() -> AiConnector:
    settings = get_settings()

    async def connect():
        return await connect_realtime(settings)

    return connect


@router.get("/")
async def index() -> dict[str, str]:
    return {"message": "Twilio Media Stream Server is running!"}


@router.api_route("/incoming-call", methods=["GET", "POST"])
async def incoming_call(request: Request) -> Response:
    settings = get_settings()
    return _twiml_response(
        _twiml_connect_stream(
            stream_url=_media_stream_url(request),
            greeting=settings.twilio_greeting,
            ready_prompt=settings.twilio_ready_prompt,
            voice=settings.twilio_say_voice,
        )
    )


@router.websocket(MEDIA_STREAM_PATH)
async def media_stream(
    websocket: WebSocket,
    connect_ai: AiConnector = Depends(get_ai_connector),
) -> None:
    await websocket.accept()
    LOGGER.info("Twilio client connected")

    session = CallSession(TwilioMediaStreamChannel(websocket), connect_ai, settings=get_settings())
    await session.run()
    LOGGER.info("Twilio client disconnected")
