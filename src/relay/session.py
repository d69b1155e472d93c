from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from config.settings import Settings, get_settings
from prompts.loader import load_prompt
from relay.channel import Channel
from relay.controller import RelayController
from relay.errors import ChannelError, MalformedMessageError
from relay.messages import parse_ai_event, parse_telephony_event, session_update
from relay.state import CallState

LOGGER = logging.getLogger(__name__)

AiConnector = Callable[[], Awaitable[Channel]]


class CallSession:
    """One phone call: a telephony channel, an AI channel and the relay between them.

    ``run()`` opens the AI channel, configures the AI session once it reports
    ready, and pumps both channels into the relay controller until either side
    ends.  Whatever ends first, both channels are closed exactly once.
    """

    def __init__(
        self,
        telephony: Channel,
        connect_ai: AiConnector,
        *,
        settings: Settings | None = None,
        instructions: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._telephony = telephony
        self._connect_ai = connect_ai
        self._instructions = (
            instructions if instructions is not None else load_prompt(self._settings.system_prompt_file)
        )
        self._ai: Channel | None = None
        self._controller: RelayController | None = None
        self._configured = False
        self._closed = False
        self.state: CallState | None = CallState()

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self) -> None:
        try:
            self._ai = await self._connect_ai()
        except ChannelError as exc:
            LOGGER.error("Could not open AI channel: %s (%r)", exc.detail, exc.cause)
            await self.close()
            return

        self._controller = RelayController(
            self._telephony,
            self._ai,
            state=self.state,
            on_stop=self.close,
            show_timing_math=self._settings.show_timing_math,
        )

        pumps = {
            asyncio.create_task(self._pump_telephony(), name="relay-telephony"),
            asyncio.create_task(self._pump_ai(), name="relay-ai"),
        }
        fallback: asyncio.Task | None = None
        if self._settings.session_ready_event is None:
            fallback = asyncio.create_task(self._configure_after_delay(), name="relay-session-update")

        tasks = [task for task in (*pumps, fallback) if task is not None]
        try:
            await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in tasks:
                if task.cancelled() or task in pending:
                    continue
                exc = task.exception()
                if exc is not None:
                    LOGGER.error("Relay task %s crashed", task.get_name(), exc_info=exc)
            await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._controller is not None:
            self._controller.close()

        await self._telephony.close()
        if self._ai is not None:
            await self._ai.close()

        self._controller = None
        self.state = None
        LOGGER.info("Call session closed")

    async def _pump_telephony(self) -> None:
        try:
            async for message in self._telephony.messages():
                if self._closed:
                    break
                try:
                    event = parse_telephony_event(message)
                except MalformedMessageError as exc:
                    LOGGER.warning("Dropping telephony message: %s", exc.detail)
                    continue
                await self._controller.on_telephony_inbound(event)
        except ChannelError as exc:
            LOGGER.warning("Relay stopped by channel failure: %s (%r)", exc.detail, exc.cause)
        LOGGER.info("Telephony stream ended")

    async def _pump_ai(self) -> None:
        try:
            async for message in self._ai.messages():
                if self._closed:
                    break
                try:
                    event = parse_ai_event(message)
                except MalformedMessageError as exc:
                    LOGGER.warning("Dropping AI message: %s", exc.detail)
                    continue
                if not self._configured and event.type == self._settings.session_ready_event:
                    await self._send_session_update()
                await self._controller.on_ai_inbound(event)
        except ChannelError as exc:
            LOGGER.warning("Relay stopped by channel failure: %s (%r)", exc.detail, exc.cause)
        LOGGER.info("AI stream ended")

    async def _configure_after_delay(self) -> None:
        # No readiness signal configured: give the remote session time to initialize.
        await asyncio.sleep(self._settings.session_update_delay_ms / 1000)
        try:
            await self._send_session_update()
        except ChannelError as exc:
            LOGGER.warning("Session update failed: %s (%r)", exc.detail, exc.cause)
            await self.close()

    async def _send_session_update(self) -> None:
        if self._configured or self._closed:
            return
        self._configured = True
        message = session_update(
            model=self._settings.openai_realtime_model,
            voice=self._settings.voice,
            instructions=self._instructions,
        )
        LOGGER.info(
            "Sending session update (model=%s, voice=%s)",
            self._settings.openai_realtime_model,
            self._settings.voice,
        )
        await self._ai.send(message)
