"""Entry point for the Twilio <-> OpenAI Realtime call relay service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from api.twilio_routes import router as twilio_router
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if not settings.openai_api_key:
        raise RuntimeError("Missing OpenAI API key. Please set OPENAI_API_KEY in the .env file.")
    LOGGER.info(
        "Relay ready (env=%s, model=%s, voice=%s)",
        settings.environment,
        settings.openai_realtime_model,
        settings.voice,
    )
    yield


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Realtime Call Relay",
    description="Relays Twilio Media Streams to an OpenAI Realtime voice session.",
    lifespan=lifespan,
)
app.include_router(twilio_router)


def run() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
