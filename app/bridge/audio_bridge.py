"""Per-connection runner feeding both legs into one call session.

Each leg's receive loop runs as its own task and only enqueues events; the
session consumes the queue one event at a time, so all session state is
touched from a single coroutine.
"""

import asyncio
from typing import List, Optional

import structlog
from websockets.asyncio.server import ServerConnection

from app.ai.elevenlabs_convai import ElevenLabsDialer
from app.bridge.call_session import CallSession
from app.bridge.legs import LegOpened, LegSide, SessionEvent, WebSocketLeg
from app.config import Config
from app.core.metrics import MetricsSink

logger = structlog.get_logger(__name__)


class MediaStreamBridge:
    """Bridge one Twilio Media Stream connection to ElevenLabs.

    Data flow:
    - Twilio receive loop -> event queue -> CallSession
    - ElevenLabs dial outcome (LegOpened / LegErrored) -> event queue -> CallSession
    - ElevenLabs receive loop (started after LegOpened) -> event queue -> CallSession
    """

    def __init__(
        self,
        connection: ServerConnection,
        config: Config,
        metrics: MetricsSink,
        dialer: Optional[ElevenLabsDialer] = None
    ) -> None:
        """Initialize bridge.

        Args:
            connection: Accepted Twilio WebSocket
            config: Bridge configuration
            metrics: Process-wide counters
            dialer: ElevenLabs dialer (built from config if omitted)
        """
        self._connection = connection
        self._config = config
        self._metrics = metrics
        self._dialer = dialer or ElevenLabsDialer(
            ws_url=config.elevenlabs.ws_url,
            api_key=config.elevenlabs.api_key
        )
        self._events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._reader_tasks: List[asyncio.Task[None]] = []
        self._finished = False

    async def run(self) -> None:
        """Run until both legs are closed."""
        twilio_leg = WebSocketLeg(self._connection, LegSide.TWILIO)
        session = CallSession(
            twilio_leg=twilio_leg,
            dialer=self._dial,
            config=self._config,
            metrics=self._metrics,
            emit=self._post
        )

        logger.info("Twilio connection accepted", remote=self._connection.remote_address)
        self._start_reader(twilio_leg)

        try:
            while not session.is_closed:
                event = await self._events.get()
                await session.dispatch(event)
        finally:
            self._finished = True
            await session.aclose()
            for task in self._reader_tasks:
                task.cancel()
            await asyncio.gather(*self._reader_tasks, return_exceptions=True)
            logger.info("Bridge finished", stream_sid=session.stream_sid)

    async def _dial(self, agent_id: str) -> WebSocketLeg:
        connection = await self._dialer.connect(agent_id)
        return WebSocketLeg(connection, LegSide.ELEVENLABS)

    def _post(self, event: SessionEvent) -> None:
        self._events.put_nowait(event)
        if isinstance(event, LegOpened) and not self._finished:
            # Reader starts after LegOpened is queued so no frame overtakes it
            self._start_reader(event.leg)

    def _start_reader(self, leg: WebSocketLeg) -> None:
        self._reader_tasks.append(
            asyncio.create_task(
                self._read_leg(leg),
                name=f"bridge-reader-{leg.side.name.lower()}"
            )
        )

    async def _read_leg(self, leg: WebSocketLeg) -> None:
        async for event in leg.events():
            await self._events.put(event)
