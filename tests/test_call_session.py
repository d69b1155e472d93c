from __future__ import annotations

import asyncio
import logging

from fakes import FakeChannel
from relay.errors import ChannelError
from relay.messages import parse_ai_event, parse_telephony_event
from relay.session import CallSession


def _connector(channel: FakeChannel):
    async def connect():
        return channel

    return connect


def test_telephony_close_closes_ai_channel_once(settings):
    async def scenario():
        telephony = FakeChannel("telephony", [{"event": "start", "start": {"streamSid": "S1"}}])
        ai = FakeChannel("ai", hold_open=True)
        session = CallSession(telephony, _connector(ai), settings=settings, instructions="Be brief.")

        await session.run()

        assert ai.close_calls == 1
        assert telephony.close_calls == 1
        assert session.closed
        assert session.state is None

    asyncio.run(scenario())


def test_ai_close_closes_telephony_channel(settings):
    async def scenario():
        telephony = FakeChannel("telephony", hold_open=True)
        ai = FakeChannel("ai", [{"type": "session.created"}])
        session = CallSession(telephony, _connector(ai), settings=settings, instructions="Be brief.")

        await session.run()

        assert telephony.close_calls == 1
        assert ai.close_calls == 1

    asyncio.run(scenario())


def test_stop_event_ends_relay_and_drops_later_frames(settings):
    async def scenario():
        telephony = FakeChannel(
            "telephony",
            [
                {"event": "start", "start": {"streamSid": "S1"}},
                {"event": "stop"},
                {"event": "media", "media": {"timestamp": "20", "payload": "late"}},
            ],
            hold_open=True,
        )
        ai = FakeChannel("ai", hold_open=True)
        session = CallSession(telephony, _connector(ai), settings=settings, instructions="Be brief.")

        await session.run()

        assert ai.sent_of("type", "input_audio_buffer.append") == []
        assert ai.close_calls == 1

    asyncio.run(scenario())


def test_session_update_waits_for_ready_event(settings):
    async def scenario():
        telephony = FakeChannel("telephony", hold_open=True)
        ai = FakeChannel(
            "ai",
            [{"type": "rate_limits.updated"}, {"type": "session.created"}, {"type": "session.created"}],
        )
        session = CallSession(telephony, _connector(ai), settings=settings, instructions="Be brief.")

        await session.run()

        updates = ai.sent_of("type", "session.update")
        assert len(updates) == 1
        assert updates[0]["session"]["instructions"] == "Be brief."
        assert updates[0]["session"]["audio"]["output"]["voice"] == settings.voice

    asyncio.run(scenario())


def test_session_update_falls_back_to_fixed_delay(settings):
    settings.session_ready_event = None
    settings.session_update_delay_ms = 10

    async def scenario():
        telephony = FakeChannel("telephony", hold_open=True)
        ai = FakeChannel("ai", hold_open=True)
        session = CallSession(telephony, _connector(ai), settings=settings, instructions="Be brief.")

        runner = asyncio.create_task(session.run())
        await asyncio.sleep(0.05)
        telephony.finish()
        await runner

        assert len(ai.sent_of("type", "session.update")) == 1

    asyncio.run(scenario())


def test_malformed_frames_do_not_end_the_call(settings):
    async def scenario():
        telephony = FakeChannel(
            "telephony",
            [
                "{not json",
                {"event": "media", "media": {"timestamp": "oops", "payload": "x"}},
                {"event": "media", "media": {"timestamp": "40", "payload": "ok"}},
            ],
        )
        ai = FakeChannel("ai", hold_open=True)
        session = CallSession(telephony, _connector(ai), settings=settings, instructions="Be brief.")

        await session.run()

        assert [m["audio"] for m in ai.sent_of("type", "input_audio_buffer.append")] == ["ok"]

    asyncio.run(scenario())


def test_channel_error_tears_down_session(settings):
    async def scenario():
        telephony = FakeChannel("telephony", hold_open=True)
        ai = FakeChannel("ai", fail_with=ConnectionResetError("reset by peer"))
        session = CallSession(telephony, _connector(ai), settings=settings, instructions="Be brief.")

        await session.run()

        assert telephony.close_calls == 1
        assert ai.close_calls == 1

    asyncio.run(scenario())


def test_failed_ai_connect_closes_telephony(settings):
    async def scenario():
        telephony = FakeChannel("telephony", hold_open=True)

        async def connect():
            raise ChannelError("Could not connect", cause=OSError("refused"))

        session = CallSession(telephony, connect, settings=settings, instructions="Be brief.")
        await session.run()

        assert telephony.close_calls == 1
        assert session.closed

    asyncio.run(scenario())


def test_interruption_round_trip_through_session(settings):
    async def scenario():
        telephony = FakeChannel(
            "telephony",
            [
                {"event": "start", "start": {"streamSid": "S1"}},
                {"event": "media", "media": {"timestamp": "500", "payload": "a"}},
            ],
            hold_open=True,
        )
        ai = FakeChannel("ai", hold_open=True)
        session = CallSession(telephony, _connector(ai), settings=settings, instructions="Be brief.")
        runner = asyncio.create_task(session.run())

        while ai.sent_of("type", "input_audio_buffer.append") == []:
            await asyncio.sleep(0)

        controller = session._controller
        await controller.on_ai_inbound(
            parse_ai_event({"type": "response.output_audio.delta", "delta": "zz", "item_id": "R1"})
        )
        await controller.on_telephony_inbound(
            parse_telephony_event({"event": "media", "media": {"timestamp": "900", "payload": "b"}})
        )
        await controller.on_ai_inbound(parse_ai_event({"type": "input_audio_buffer.speech_started"}))

        telephony.finish()
        await runner

        assert ai.sent_of("type", "conversation.item.truncate")[0]["audio_end_ms"] == 400
        assert telephony.sent_of("event", "clear") == [{"event": "clear", "streamSid": "S1"}]

    asyncio.run(scenario())


def test_default_persona_prompt_is_loaded(settings):
    session = CallSession(FakeChannel("telephony"), _connector(FakeChannel("ai")), settings=settings)
    assert "helpful" in session._instructions


class _EncoderBugChannel(FakeChannel):
    async def send(self, message):
        raise ValueError("cannot encode frame")


def test_unexpected_pump_error_is_logged_and_session_closes(settings, caplog):
    async def scenario():
        telephony = FakeChannel(
            "telephony",
            [
                {"event": "start", "start": {"streamSid": "S1"}},
                {"event": "media", "media": {"timestamp": "20", "payload": "AAAA"}},
            ],
            hold_open=True,
        )
        ai = _EncoderBugChannel("ai", hold_open=True)
        session = CallSession(telephony, _connector(ai), settings=settings, instructions="Be brief.")

        await session.run()

        assert telephony.close_calls == 1
        assert ai.close_calls == 1
        assert session.closed

    with caplog.at_level(logging.ERROR, logger="relay.session"):
        asyncio.run(scenario())

    crashes = [record for record in caplog.records if record.levelno == logging.ERROR]
    assert len(crashes) == 1
    assert "relay-telephony" in crashes[0].getMessage()
    assert isinstance(crashes[0].exc_info[1], ValueError)


def test_send_failure_is_logged_with_failing_channel(settings, caplog):
    async def scenario():
        telephony = FakeChannel("telephony", open_=False, hold_open=True)
        ai = FakeChannel(
            "ai",
            [{"type": "response.output_audio.delta", "delta": "AAAA", "item_id": "R1"}],
            hold_open=True,
        )
        session = CallSession(telephony, _connector(ai), settings=settings, instructions="Be brief.")

        await session.run()

        assert telephony.close_calls == 1
        assert ai.close_calls == 1

    with caplog.at_level(logging.WARNING, logger="relay.session"):
        asyncio.run(scenario())

    warnings = [record.getMessage() for record in caplog.records if record.levelno == logging.WARNING]
    assert any("telephony closed" in message for message in warnings)
    assert not any("AI side" in message for message in warnings)
