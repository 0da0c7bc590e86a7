"""Leg protocol and the events a call session reacts to."""

from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from typing import AsyncIterator, Optional, Protocol, Union, runtime_checkable

import structlog
from websockets.asyncio.connection import Connection
from websockets.exceptions import ConnectionClosed, ConnectionClosedError

from app.core.constants import CloseCodes


logger = structlog.get_logger(__name__)


class LegSide(Enum):
    """Which side of the bridge a leg or event belongs to."""

    TWILIO = auto()      # Inbound: Twilio Media Streams
    ELEVENLABS = auto()  # Outbound: ElevenLabs ConvAI

    @property
    def other(self) -> "LegSide":
        """The paired side."""
        return LegSide.ELEVENLABS if self is LegSide.TWILIO else LegSide.TWILIO


@dataclass(frozen=True)
class LegMessage:
    """A text frame received on a leg."""

    side: LegSide
    data: str | bytes


@dataclass(frozen=True)
class LegClosed:
    """A leg's transport closed."""

    side: LegSide
    code: Optional[int] = None
    reason: str = ""


@dataclass(frozen=True)
class LegErrored:
    """A leg's transport failed."""

    side: LegSide
    error: str = ""


@runtime_checkable
class Leg(Protocol):
    """Protocol for one side of a bridged call."""

    @abstractmethod
    async def send(self, message: str) -> None:
        """Send a text frame.

        Raises:
            ConnectionError: If the leg is no longer open
        """
        ...

    @abstractmethod
    async def close(self, code: int = CloseCodes.NORMAL, reason: str = "") -> None:
        """Close the leg. Must not raise if it is already closed."""
        ...


@dataclass(frozen=True)
class LegOpened:
    """A dialed leg finished its handshake."""

    side: LegSide
    leg: Leg


SessionEvent = Union[LegMessage, LegClosed, LegErrored, LegOpened]


class WebSocketLeg:
    """Leg backed by a websockets connection (server or client side)."""

    def __init__(self, connection: Connection, side: LegSide) -> None:
        """Initialize leg.

        Args:
            connection: Open websockets connection
            side: Side of the bridge this connection serves
        """
        self._connection = connection
        self._side = side

    @property
    def side(self) -> LegSide:
        """Side of the bridge."""
        return self._side

    async def send(self, message: str) -> None:
        """Send a text frame.

        Raises:
            ConnectionError: If the connection is closed
        """
        try:
            await self._connection.send(message)
        except ConnectionClosed as e:
            raise ConnectionError(f"{self._side.name} leg closed: {e}") from e

    async def close(self, code: int = CloseCodes.NORMAL, reason: str = "") -> None:
        """Close the connection; a no-op if it is already closed."""
        try:
            await self._connection.close(code, reason)
        except ConnectionClosed:
            logger.debug("Leg already closed", side=self._side.name)

    async def events(self) -> AsyncIterator[SessionEvent]:
        """Iterate over received frames, ending with exactly one close/error event.

        Yields:
            LegMessage per frame, then LegClosed or LegErrored
        """
        try:
            async for message in self._connection:
                yield LegMessage(self._side, message)
        except ConnectionClosedError as e:
            yield LegErrored(self._side, error=str(e))
            return

        yield LegClosed(
            self._side,
            code=self._connection.close_code,
            reason=self._connection.close_reason or ""
        )
