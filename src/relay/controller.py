"""Relay controller: the per-call timing and interruption state machine.

Caller audio flows telephony -> AI, synthesized audio flows AI -> telephony.
Every forwarded audio delta is followed by a Twilio ``mark``; the marks still
waiting for acknowledgement tell us that synthesized audio is queued or
playing on the caller's side.  When the AI's voice activity detector reports
that the caller started talking over that audio, the controller clears the
telephony playback buffer and truncates the AI's record of the response at
the point the caller actually heard, measured on the caller's media clock:

    audio_end_ms = latest_inbound_timestamp - response_start_timestamp
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from config.settings import LOG_EVENT_TYPES
from relay.channel import Channel
from relay.errors import ProtocolViolation
from relay.messages import (
    AiEvent,
    AudioDelta,
    MediaFrame,
    OtherAiEvent,
    OtherTelephonyEvent,
    PlaybackAcknowledged,
    ResponseDone,
    SpeechStarted,
    StreamStart,
    StreamStop,
    TelephonyEvent,
    append_audio,
    clear_playback,
    playback_mark,
    playback_media,
    truncate_item,
)
from relay.state import CallState

LOGGER = logging.getLogger(__name__)


class RelayController:
    """Mediates between the telephony and AI channels of one call."""

    def __init__(
        self,
        telephony: Channel,
        ai: Channel,
        *,
        state: CallState | None = None,
        on_stop: Callable[[], Awaitable[None]] | None = None,
        show_timing_math: bool = False,
    ) -> None:
        self._telephony = telephony
        self._ai = ai
        self.state = state if state is not None else CallState()
        self._on_stop = on_stop
        self._show_timing_math = show_timing_math
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def on_telephony_inbound(self, event: TelephonyEvent) -> None:
        if self._closed:
            LOGGER.debug("Relay closed; dropping telephony %s", type(event).__name__)
            return

        if isinstance(event, MediaFrame):
            await self._forward_caller_audio(event)
        elif isinstance(event, StreamStart):
            self._start_stream(event)
        elif isinstance(event, PlaybackAcknowledged):
            self._acknowledge_mark(event)
        elif isinstance(event, StreamStop):
            LOGGER.info("Stream %s stopped by telephony", self.state.stream_id)
            if self._on_stop is not None:
                await self._on_stop()
        elif isinstance(event, OtherTelephonyEvent):
            LOGGER.info("Non-media telephony event: %s", event.event)

    async def on_ai_inbound(self, event: AiEvent) -> None:
        if self._closed:
            LOGGER.debug("Relay closed; dropping AI %s", event.type)
            return

        if event.type in LOG_EVENT_TYPES:
            if isinstance(event, OtherAiEvent):
                LOGGER.info("OpenAI event: %s %s", event.type, event.body)
            else:
                LOGGER.info("OpenAI event: %s", event.type)

        if isinstance(event, AudioDelta):
            await self._forward_response_audio(event)
        elif isinstance(event, SpeechStarted):
            try:
                await self._interrupt()
            except ProtocolViolation as exc:
                LOGGER.debug("Ignoring caller speech start: %s", exc.detail)
        elif isinstance(event, ResponseDone):
            self._finish_response()

    # telephony -> AI

    def _start_stream(self, event: StreamStart) -> None:
        state = self.state
        if state.stream_id is None:
            state.stream_id = event.stream_id
        elif state.stream_id != event.stream_id:
            LOGGER.warning(
                "Ignoring stream id %s; call is bound to stream %s", event.stream_id, state.stream_id
            )
        state.latest_inbound_timestamp = 0
        state.response_start_timestamp = None
        LOGGER.info("Stream started: %s (call %s)", state.stream_id, event.call_id)

    async def _forward_caller_audio(self, frame: MediaFrame) -> None:
        state = self.state
        # Late frames never move the clock backwards.
        state.latest_inbound_timestamp = max(state.latest_inbound_timestamp, frame.timestamp)
        if not self._ai.is_open:
            LOGGER.debug("AI channel not open; dropped caller frame at %sms", frame.timestamp)
            return
        await self._ai.send(append_audio(frame.payload))

    def _acknowledge_mark(self, event: PlaybackAcknowledged) -> None:
        state = self.state
        if not state.pending_marks:
            LOGGER.debug("Mark %s acknowledged with no marks pending", event.name)
            return
        state.pending_marks.popleft()
        if not state.pending_marks and state.response_done:
            LOGGER.debug("Response %s finished playing", state.last_assistant_item_id)
            state.reset_response()

    # AI -> telephony

    async def _forward_response_audio(self, event: AudioDelta) -> None:
        state = self.state
        if (
            state.response_done
            and event.item_id is not None
            and event.item_id != state.last_assistant_item_id
        ):
            # Previous response is complete but still draining; this delta opens a new one.
            state.response_start_timestamp = None
            state.response_done = False

        await self._telephony.send(playback_media(state.stream_id, event.delta))

        if state.response_start_timestamp is None:
            state.response_start_timestamp = state.latest_inbound_timestamp
            if self._show_timing_math:
                LOGGER.info("Response start anchored at %sms", state.response_start_timestamp)
        if event.item_id:
            state.last_assistant_item_id = event.item_id

        await self._send_mark()

    async def _send_mark(self) -> None:
        state = self.state
        if state.stream_id is None:
            return
        name = state.next_mark_name()
        await self._telephony.send(playback_mark(state.stream_id, name))
        state.pending_marks.append(name)

    def _finish_response(self) -> None:
        state = self.state
        if not state.response_in_flight:
            return
        if state.pending_marks:
            state.response_done = True
        else:
            state.reset_response()

    async def _interrupt(self) -> None:
        state = self.state
        if not state.pending_marks or state.response_start_timestamp is None:
            raise ProtocolViolation("caller speech started with no response playing")

        elapsed = state.latest_inbound_timestamp - state.response_start_timestamp
        if self._show_timing_math:
            LOGGER.info(
                "Elapsed time for truncation: %s - %s = %sms",
                state.latest_inbound_timestamp,
                state.response_start_timestamp,
                elapsed,
            )

        if state.last_assistant_item_id:
            await self._ai.send(truncate_item(state.last_assistant_item_id, elapsed))
        await self._telephony.send(clear_playback(state.stream_id))
        state.reset_response()
