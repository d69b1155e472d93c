"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# AI event types echoed to the log; they carry no relay behavior.
LOG_EVENT_TYPES: frozenset[str] = frozenset(
    {
        "error",
        "response.content.done",
        "rate_limits.updated",
        "response.done",
        "input_audio_buffer.committed",
        "input_audio_buffer.speech_stopped",
        "input_audio_buffer.speech_started",
        "session.created",
        "session.updated",
    }
)


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5050)

    # OpenAI Realtime session
    openai_api_key: str | None = Field(default=None)
    openai_realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    openai_realtime_model: str = Field(default="gpt-4o-realtime-preview")
    voice: str = Field(default="alloy")
    temperature: float = Field(default=0.8, ge=0.0, le=2.0)
    system_prompt_file: str = Field(
        default="default_assistant.txt",
        description="Persona prompt shipped in the prompts package.",
    )
    session_ready_event: str | None = Field(
        default="session.created",
        description="AI event that gates the session.update; empty falls back to a fixed delay.",
    )
    session_update_delay_ms: int = Field(default=100, ge=0)
    show_timing_math: bool = Field(default=False)

    # Twilio call control
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL used in the stream TwiML (e.g. https://<ngrok>.ngrok-free.app).",
    )
    twilio_say_voice: str = Field(default="Google.en-US-Chirp3-HD-Aoede")
    twilio_greeting: str = Field(
        default=(
            "Please wait while we connect your call to the AI voice assistant, "
            "powered by Twilio and the Open A I Realtime API"
        )
    )
    twilio_ready_prompt: str = Field(default="O.K. you can start talking!")

    @field_validator("session_ready_event")
    @classmethod
    def empty_event_disables_gating(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    def realtime_ws_url(self) -> str:
        return f"{self.openai_realtime_url}?model={self.openai_realtime_model}&temperature={self.temperature}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
