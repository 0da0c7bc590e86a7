"""In-memory legs, dialer and connection for testing."""

import asyncio
import json
from typing import Any, Callable, List, Optional, Tuple

import structlog

from app.bridge.legs import SessionEvent
from app.core.constants import CloseCodes


class FakeLeg:
    """Leg that records sent frames and close calls."""

    def __init__(self, fail_send: bool = False) -> None:
        """Initialize fake leg.

        Args:
            fail_send: Raise ConnectionError on every send
        """
        self.sent: List[str] = []
        self.close_calls: List[Tuple[int, str]] = []
        self.fail_send = fail_send
        self._logger = structlog.get_logger(__name__)

    async def send(self, message: str) -> None:
        if self.fail_send:
            raise ConnectionError("fake leg closed")
        self.sent.append(message)

    async def close(self, code: int = CloseCodes.NORMAL, reason: str = "") -> None:
        self._logger.debug("Fake leg closed", code=code, reason=reason)
        self.close_calls.append((code, reason))

    def sent_json(self) -> List[dict]:
        """Get sent frames decoded as JSON."""
        return [json.loads(message) for message in self.sent]


class FakeDialer:
    """Dialer that hands out FakeLegs and records requested agents."""

    def __init__(
        self,
        error: Optional[Exception] = None,
        fail_send: bool = False,
        gate: Optional[asyncio.Event] = None
    ) -> None:
        """Initialize fake dialer.

        Args:
            error: Raised by every dial
            fail_send: Hand out legs whose sends fail
            gate: Hold every handshake until this event is set
        """
        self.calls: List[str] = []
        self.legs: List[FakeLeg] = []
        self._error = error
        self._fail_send = fail_send
        self._gate = gate

    async def __call__(self, agent_id: str) -> FakeLeg:
        self.calls.append(agent_id)
        if self._gate is not None:
            await self._gate.wait()
        if self._error is not None:
            raise self._error
        leg = FakeLeg(fail_send=self._fail_send)
        self.legs.append(leg)
        return leg

    @property
    def leg(self) -> FakeLeg:
        """The most recently dialed leg."""
        return self.legs[-1]


class FakeConnection:
    """Stand-in for a websockets connection, fed from a queue.

    Queue a str to deliver a frame, None to end the stream (clean close).
    """

    def __init__(self, frames: Optional[List[Optional[str]]] = None) -> None:
        self.incoming: asyncio.Queue[Optional[str]] = asyncio.Queue()
        for frame in frames or []:
            self.incoming.put_nowait(frame)
        self.sent: List[str] = []
        self.close_calls: List[Tuple[int, str]] = []
        self.close_code: Optional[int] = None
        self.close_reason: str = ""
        self.remote_address: Any = ("127.0.0.1", 40000)

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def close(self, code: int = CloseCodes.NORMAL, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        self.close_code = code
        self.close_reason = reason

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> str:
        frame = await self.incoming.get()
        if frame is None:
            self.close_code = self.close_code or CloseCodes.NORMAL
            raise StopAsyncIteration
        return frame


class FakeConnector:
    """ElevenLabsDialer stand-in returning prepared FakeConnections."""

    def __init__(self, connection: FakeConnection, gate: Optional[asyncio.Event] = None) -> None:
        self.connection = connection
        self.calls: List[str] = []
        self._gate = gate

    async def connect(self, agent_id: str) -> FakeConnection:
        self.calls.append(agent_id)
        if self._gate is not None:
            await self._gate.wait()
        return self.connection


class SessionOutbox:
    """Collects the events a session posts to itself and replays them."""

    def __init__(self) -> None:
        self.events: List[SessionEvent] = []

    def emit(self, event: SessionEvent) -> None:
        self.events.append(event)

    async def deliver(self, session: Any) -> None:
        """Let the dial task finish, then dispatch everything posted so far."""
        if session.dial_task is not None:
            await asyncio.wait([session.dial_task])
        await asyncio.sleep(0)
        while self.events:
            await session.dispatch(self.events.pop(0))


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate on the event loop until it holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)
