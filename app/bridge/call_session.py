"""Per-call session state machine bridging Twilio and ElevenLabs.

Lifecycle:
    PENDING        Twilio leg connected, no start yet
    AUTHENTICATING start received, checking account/agent/token
    ACTIVE         ElevenLabs dialed, audio flows both ways once it connects
    CLOSING        one leg is gone, the other is being closed
    CLOSED         both legs closed (terminal)

Data flow:
- Uplink: Twilio media -> μ-law 8kHz -> PCM16 16kHz -> user_audio_chunk -> ElevenLabs
- Downlink: ElevenLabs audio -> PCM16 16kHz -> μ-law 8kHz -> 160B frames + mark -> Twilio

Every per-message failure is contained here: bad envelopes and bad audio are
logged and dropped, transport failures close the paired leg. The ElevenLabs
handshake runs as a task whose outcome comes back as a LegOpened or LegErrored
event, so Twilio events keep flowing while it is in flight. Nothing is
retried and no leg is ever reconnected.
"""

import asyncio
from enum import Enum, auto
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

import structlog

from app.ai.elevenlabs_convai import (
    AudioMessage,
    PingMessage,
    parse_outbound,
    pong_message,
    user_audio_chunk_message,
)
from app.bridge.frame_pacer import FramePacer
from app.bridge.legs import (
    Leg,
    LegClosed,
    LegErrored,
    LegMessage,
    LegOpened,
    LegSide,
    SessionEvent,
)
from app.config import Config
from app.core.codec import AudioFormatError, mulaw_8k_to_pcm16_16k, pcm16_16k_to_mulaw_8k
from app.core.constants import AudioConstants, CloseCodes
from app.core.envelope import EnvelopeError, UnknownEnvelopeError
from app.core.metrics import MetricsSink
from app.twilio.media_stream import (
    MarkEvent,
    MediaEvent,
    StartEvent,
    StopEvent,
    parse_inbound,
)


Dialer = Callable[[str], Awaitable[Leg]]
Emit = Callable[[SessionEvent], None]


class SessionState(Enum):
    """Call session lifecycle states."""

    PENDING = auto()
    AUTHENTICATING = auto()
    ACTIVE = auto()
    CLOSING = auto()
    CLOSED = auto()


# Close reasons sent to the surviving leg when its partner goes away
_PARTNER_CLOSED_REASON = {
    LegSide.ELEVENLABS: "11L closed",
    LegSide.TWILIO: "TW closed",
}


class CallSession:
    """Owns one call: identifiers, auth result, both leg handles."""

    def __init__(
        self,
        twilio_leg: Leg,
        dialer: Dialer,
        config: Config,
        metrics: MetricsSink,
        emit: Emit,
        pacer: Optional[FramePacer] = None
    ) -> None:
        """Initialize session for a freshly accepted Twilio connection.

        Args:
            twilio_leg: Inbound leg
            dialer: Opens the ElevenLabs leg for a resolved agent id
            config: Bridge configuration
            metrics: Process-wide counters
            emit: Queues an event for this session's own dispatch loop
            pacer: Frame pacer for downlink audio
        """
        self._legs: Dict[LegSide, Optional[Leg]] = {
            LegSide.TWILIO: twilio_leg,
            LegSide.ELEVENLABS: None,
        }
        self._closed: Set[LegSide] = set()
        self._dialer = dialer
        self._emit = emit
        self._dial_task: Optional[asyncio.Task[Leg]] = None
        self._dial_pending = False
        self._dial_close: Tuple[int, str] = (
            CloseCodes.NORMAL, _PARTNER_CLOSED_REASON[LegSide.TWILIO]
        )
        self._config = config
        self._metrics = metrics
        self._pacer = pacer or FramePacer()
        self._endian = config.elevenlabs.pcm_endian

        self._state = SessionState.PENDING
        self._stream_sid: Optional[str] = None
        self._agent_id: Optional[str] = None
        self._token: Optional[str] = None

        # Stats
        self._uplink_chunks = 0
        self._downlink_chunks = 0

        self._logger = structlog.get_logger(__name__)
        self._metrics.record_twilio_connection()

    @property
    def state(self) -> SessionState:
        """Current lifecycle state."""
        return self._state

    @property
    def stream_sid(self) -> Optional[str]:
        """Twilio stream identifier, set by the start envelope."""
        return self._stream_sid

    @property
    def agent_id(self) -> Optional[str]:
        """Resolved ElevenLabs agent identifier."""
        return self._agent_id

    @property
    def dial_task(self) -> Optional[asyncio.Task[Leg]]:
        """The ElevenLabs handshake task, once started."""
        return self._dial_task

    @property
    def is_closed(self) -> bool:
        """Whether the session reached its terminal state."""
        return self._state is SessionState.CLOSED

    async def dispatch(self, event: SessionEvent) -> None:
        """Handle one event from either leg.

        Args:
            event: Message, close, or error event
        """
        if self._state is SessionState.CLOSED:
            self._logger.debug("Event after close ignored", event_type=type(event).__name__)
            return

        if isinstance(event, LegMessage):
            if event.side is LegSide.TWILIO:
                await self._on_twilio_message(event.data)
            else:
                await self._on_eleven_message(event.data)

        elif isinstance(event, LegClosed):
            self._logger.info(
                "Leg closed",
                side=event.side.name,
                code=event.code,
                reason=event.reason
            )
            await self._on_leg_down(event.side)

        elif isinstance(event, LegErrored):
            if event.side is LegSide.ELEVENLABS and self._legs[LegSide.ELEVENLABS] is None:
                self._dial_pending = False
            self._logger.error("Leg transport error", side=event.side.name, error=event.error)
            await self._on_leg_down(event.side)

        elif isinstance(event, LegOpened):
            await self._on_dialed(event.leg)

    # Twilio leg

    async def _on_twilio_message(self, raw: str | bytes) -> None:
        try:
            envelope = parse_inbound(raw)
        except UnknownEnvelopeError as e:
            self._logger.debug("Ignoring Twilio envelope", reason=str(e))
            return
        except EnvelopeError as e:
            self._logger.warning("Dropping malformed Twilio envelope", error=str(e))
            return
        except AudioFormatError as e:
            self._logger.warning("Dropping undecodable Twilio audio", error=str(e))
            return

        if isinstance(envelope, MediaEvent):
            await self._on_media(envelope)
        elif isinstance(envelope, StartEvent):
            await self._on_start(envelope)
        elif isinstance(envelope, StopEvent):
            await self._on_stop()
        elif isinstance(envelope, MarkEvent):
            self._logger.debug("Twilio mark played", name=envelope.name)

    async def _on_start(self, start: StartEvent) -> None:
        if self._state is not SessionState.PENDING:
            self._logger.warning("Ignoring duplicate start", state=self._state.name)
            return

        self._state = SessionState.AUTHENTICATING
        self._stream_sid = start.stream_sid
        self._logger = self._logger.bind(stream_sid=start.stream_sid)

        expected_account = self._config.twilio.account_sid
        if expected_account and start.account_sid != expected_account:
            self._logger.warning("Blocked start: accountSid mismatch", got=start.account_sid)
            await self._reject("bad account")
            return

        params = start.custom_parameters
        agent_id = params.get("agent_id") or self._config.elevenlabs.agent_id
        if not agent_id:
            self._logger.warning("Blocked start: no agent_id")
            await self._reject("Missing agent_id")
            return

        # Presence only: the token is not verified
        token = params.get("token")
        if not token:
            self._logger.warning("Blocked start: no token", agent_id=agent_id)
            await self._reject("Missing token")
            return

        self._agent_id = str(agent_id)
        self._token = str(token)
        self._logger = self._logger.bind(agent_id=self._agent_id)
        self._logger.debug("Twilio start ok", pcm_endian=self._endian)

        self._state = SessionState.ACTIVE
        self._start_dial()

    async def _reject(self, reason: str) -> None:
        await self._close_leg(LegSide.TWILIO, CloseCodes.POLICY_VIOLATION, reason)

    def _start_dial(self) -> None:
        self._metrics.record_eleven_connection()
        self._dial_pending = True
        self._dial_task = asyncio.create_task(self._open_eleven(), name="eleven-dial")
        self._dial_task.add_done_callback(self._on_dial_done)

    async def _open_eleven(self) -> Leg:
        return await self._dialer(self._agent_id)

    def _on_dial_done(self, task: "asyncio.Task[Leg]") -> None:
        """Report the handshake outcome as an event."""
        if task.cancelled():
            self._emit(LegErrored(LegSide.ELEVENLABS, error="dial cancelled"))
            return

        error = task.exception()
        if error is not None:
            self._logger.error("ElevenLabs dial failed", error=str(error), exc_info=error)
            self._emit(LegErrored(LegSide.ELEVENLABS, error=str(error)))
            return

        self._emit(LegOpened(LegSide.ELEVENLABS, task.result()))

    async def _on_dialed(self, leg: Leg) -> None:
        self._dial_pending = False

        if LegSide.ELEVENLABS in self._closed:
            # Twilio went away while the handshake was in flight
            await self._close_late_leg(leg)
            self._maybe_finish()
            return

        self._legs[LegSide.ELEVENLABS] = leg
        self._logger.info("ElevenLabs connected")

    async def _close_late_leg(self, leg: Leg) -> None:
        code, reason = self._dial_close
        self._logger.info("Closing leg opened after teardown", code=code, reason=reason)
        try:
            await leg.close(code, reason)
        except Exception as e:
            self._logger.warning("Error closing leg", side=LegSide.ELEVENLABS.name, error=str(e))

    async def _on_media(self, media: MediaEvent) -> None:
        self._metrics.record_media_from_twilio(len(media.audio))

        if self._state is not SessionState.ACTIVE or self._open_leg(LegSide.ELEVENLABS) is None:
            self._logger.debug("Dropping media before ElevenLabs is connected", state=self._state.name)
            return

        pcm_16k = mulaw_8k_to_pcm16_16k(media.audio, self._endian)
        if not await self._send(LegSide.ELEVENLABS, user_audio_chunk_message(pcm_16k)):
            return

        self._uplink_chunks += 1
        if self._uplink_chunks % AudioConstants.LOG_INTERVAL_FRAMES == 0:
            self._logger.debug("Forwarded chunks to ElevenLabs", count=self._uplink_chunks)

    async def _on_stop(self) -> None:
        self._logger.info("Twilio stop received")
        await self._close_leg(LegSide.ELEVENLABS, CloseCodes.NORMAL, "Twilio stop")
        await self._close_leg(LegSide.TWILIO, CloseCodes.NORMAL, _PARTNER_CLOSED_REASON[LegSide.ELEVENLABS])

    # ElevenLabs leg

    async def _on_eleven_message(self, raw: str | bytes) -> None:
        try:
            message = parse_outbound(raw)
        except EnvelopeError as e:
            self._logger.warning("Dropping malformed ElevenLabs message", error=str(e))
            return
        except AudioFormatError as e:
            self._logger.warning("Dropping undecodable ElevenLabs audio", error=str(e))
            return

        if isinstance(message, PingMessage):
            await self._send(LegSide.ELEVENLABS, pong_message(message.event_id))
        elif isinstance(message, AudioMessage):
            await self._on_agent_audio(message)
        else:
            self._logger.debug("Ignoring ElevenLabs message", type=message.type)

    async def _on_agent_audio(self, message: AudioMessage) -> None:
        self._metrics.record_chunk_from_eleven()

        try:
            ulaw = pcm16_16k_to_mulaw_8k(message.pcm, self._endian)
        except AudioFormatError as e:
            self._logger.warning("Dropping undecodable ElevenLabs audio", error=str(e))
            return

        if self._state is not SessionState.ACTIVE or self._stream_sid is None:
            return

        for envelope, byte_count in self._pacer.media_frames(self._stream_sid, ulaw):
            if not await self._send(LegSide.TWILIO, envelope):
                return
            self._metrics.record_media_to_twilio(byte_count)

        await self._send(LegSide.TWILIO, self._pacer.mark(self._stream_sid))

        self._downlink_chunks += 1
        if self._downlink_chunks % AudioConstants.LOG_INTERVAL_FRAMES == 0:
            self._logger.debug("Forwarded chunks to Twilio", count=self._downlink_chunks)

    # Leg bookkeeping

    def _open_leg(self, side: LegSide) -> Optional[Leg]:
        if side in self._closed:
            return None
        return self._legs[side]

    async def _send(self, side: LegSide, message: str) -> bool:
        """Send on a leg; a failed send tears the session down.

        Returns:
            True if the message was sent
        """
        leg = self._open_leg(side)
        if leg is None:
            return False

        try:
            await leg.send(message)
            return True
        except ConnectionError as e:
            self._logger.warning("Send failed", side=side.name, error=str(e))
            await self._on_leg_down(side)
            return False

    async def _on_leg_down(self, side: LegSide) -> None:
        """A leg is gone: record it and close its partner normally."""
        self._closed.add(side)
        await self._close_leg(side.other, CloseCodes.NORMAL, _PARTNER_CLOSED_REASON[side])

    async def _close_leg(self, side: LegSide, code: int, reason: str) -> None:
        """Close one leg at most once, then finish if both are gone."""
        if self._state is not SessionState.CLOSED:
            self._state = SessionState.CLOSING

        leg = self._legs[side]
        if side not in self._closed:
            self._closed.add(side)
            if leg is not None:
                self._logger.info("Closing leg", side=side.name, code=code, reason=reason)
                try:
                    await leg.close(code, reason)
                except Exception as e:
                    self._logger.warning("Error closing leg", side=side.name, error=str(e))
            elif side is LegSide.ELEVENLABS and self._dial_pending:
                self._logger.info("Cancelling ElevenLabs dial", reason=reason)
                self._dial_close = (code, reason)
                self._dial_task.cancel()

        self._maybe_finish()

    async def aclose(self) -> None:
        """Close every leg still open and abandon an in-flight dial.

        Used by the runner on its way out; a no-op once both legs are closed.
        """
        task = self._dial_task
        if self._dial_pending and task is not None:
            self._dial_pending = False
            if not task.done():
                task.cancel()
            elif not task.cancelled() and task.exception() is None:
                # Handshake finished but its LegOpened was never dispatched
                await self._close_late_leg(task.result())

        await self._close_leg(
            LegSide.ELEVENLABS, CloseCodes.NORMAL, _PARTNER_CLOSED_REASON[LegSide.TWILIO]
        )
        await self._close_leg(
            LegSide.TWILIO, CloseCodes.NORMAL, _PARTNER_CLOSED_REASON[LegSide.ELEVENLABS]
        )

    def _maybe_finish(self) -> None:
        if self._state is SessionState.CLOSED:
            return

        twilio_done = LegSide.TWILIO in self._closed
        eleven_done = not self._dial_pending and (
            LegSide.ELEVENLABS in self._closed
            or self._legs[LegSide.ELEVENLABS] is None
        )
        if twilio_done and eleven_done:
            self._closed.add(LegSide.ELEVENLABS)
            self._state = SessionState.CLOSED
            self._logger.info(
                "Session closed",
                uplink_chunks=self._uplink_chunks,
                downlink_chunks=self._downlink_chunks
            )
