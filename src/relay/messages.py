"""Wire schemas for both sides of the relay.

Inbound frames are validated into small Pydantic models; outbound frames are
built as plain dicts that the channels serialize as JSON.

Telephony (Twilio Media Streams):
  <- {"event":"start", "start":{"streamSid":"...", "callSid":"..."}}
  <- {"event":"media", "media":{"timestamp":"<ms>", "payload":"<base64 mulaw>"}}
  <- {"event":"mark",  "mark":{"name":"..."}}
  <- {"event":"stop"}
  -> {"event":"media", "streamSid":"...", "media":{"payload":"..."}}
  -> {"event":"mark",  "streamSid":"...", "mark":{"name":"..."}}
  -> {"event":"clear", "streamSid":"..."}

AI (OpenAI Realtime):
  <- {"type":"response.output_audio.delta", "delta":"<base64>", "item_id":"..."}
  <- {"type":"input_audio_buffer.speech_started"}
  <- {"type":"response.done"}
  -> {"type":"input_audio_buffer.append", "audio":"..."}
  -> {"type":"conversation.item.truncate", "item_id":"...", "content_index":0, "audio_end_ms":N}
  -> {"type":"session.update", "session":{...}}
"""

from __future__ import annotations

from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relay.errors import MalformedMessageError

AUDIO_DELTA_TYPES = frozenset({"response.output_audio.delta", "response.audio.delta"})
SPEECH_STARTED_TYPE = "input_audio_buffer.speech_started"
RESPONSE_DONE_TYPE = "response.done"

AUDIO_FORMAT = "audio/pcmu"


# Telephony -> relay


class StreamStart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stream_id: str = Field(alias="streamSid", min_length=1)
    call_id: str | None = Field(default=None, alias="callSid")


class MediaFrame(BaseModel):
    timestamp: int = Field(ge=0)
    payload: str


class PlaybackAcknowledged(BaseModel):
    name: str | None = None


class StreamStop(BaseModel):
    pass


class OtherTelephonyEvent(BaseModel):
    event: str


TelephonyEvent = Union[StreamStart, MediaFrame, PlaybackAcknowledged, StreamStop, OtherTelephonyEvent]


# AI -> relay


class AudioDelta(BaseModel):
    type: str
    delta: str = Field(min_length=1)
    item_id: str | None = None


class SpeechStarted(BaseModel):
    type: str = SPEECH_STARTED_TYPE
    item_id: str | None = None


class ResponseDone(BaseModel):
    type: str = RESPONSE_DONE_TYPE


class OtherAiEvent(BaseModel):
    type: str
    body: dict[str, Any] = Field(default_factory=dict)


AiEvent = Union[AudioDelta, SpeechStarted, ResponseDone, OtherAiEvent]


def parse_telephony_event(message: Any) -> TelephonyEvent:
    if not isinstance(message, dict):
        raise MalformedMessageError("Telephony message is not a JSON object", raw=message)

    event = message.get("event")
    try:
        if event == "start":
            return StreamStart.model_validate(message.get("start") or {})
        if event == "media":
            return MediaFrame.model_validate(message.get("media") or {})
        if event == "mark":
            return PlaybackAcknowledged.model_validate(message.get("mark") or {})
        if event == "stop":
            return StreamStop()
    except ValidationError as exc:
        raise MalformedMessageError(
            f"Invalid telephony '{event}' message ({exc.error_count()} error(s))", raw=message
        ) from exc

    if not isinstance(event, str) or not event:
        raise MalformedMessageError("Telephony message has no event name", raw=message)
    return OtherTelephonyEvent(event=event)


def parse_ai_event(message: Any) -> AiEvent:
    if not isinstance(message, dict):
        raise MalformedMessageError("AI message is not a JSON object", raw=message)

    event_type = message.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedMessageError("AI message has no type", raw=message)

    try:
        if event_type in AUDIO_DELTA_TYPES:
            return AudioDelta.model_validate(message)
        if event_type == SPEECH_STARTED_TYPE:
            return SpeechStarted.model_validate(message)
        if event_type == RESPONSE_DONE_TYPE:
            return ResponseDone()
    except ValidationError as exc:
        raise MalformedMessageError(
            f"Invalid AI '{event_type}' message ({exc.error_count()} error(s))", raw=message
        ) from exc

    return OtherAiEvent(type=event_type, body=message)


# relay -> telephony


def playback_media(stream_id: str | None, payload: str) -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_id, "media": {"payload": payload}}


def playback_mark(stream_id: str, name: str) -> dict[str, Any]:
    return {"event": "mark", "streamSid": stream_id, "mark": {"name": name}}


def clear_playback(stream_id: str | None) -> dict[str, Any]:
    return {"event": "clear", "streamSid": stream_id}


# relay -> AI


def append_audio(payload: str) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": payload}


def truncate_item(item_id: str, audio_end_ms: int) -> dict[str, Any]:
    # Each response is a single audio stream, so the first content slot is always the target.
    return {
        "type": "conversation.item.truncate",
        "item_id": item_id,
        "content_index": 0,
        "audio_end_ms": audio_end_ms,
    }


def session_update(*, model: str, voice: str, instructions: str) -> dict[str, Any]:
    return {
        "type": "session.update",
        "session": {
            "type": "realtime",
            "model": model,
            "output_modalities": ["audio"],
            "audio": {
                "input": {
                    "format": {"type": AUDIO_FORMAT},
                    "turn_detection": {"type": "server_vad"},
                },
                "output": {"format": {"type": AUDIO_FORMAT}, "voice": voice},
            },
            "instructions": instructions,
        },
    }
