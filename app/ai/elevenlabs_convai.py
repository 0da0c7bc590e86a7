"""ElevenLabs Conversational AI adapter.

Message parsing and construction for the ConvAI WebSocket, plus the dialer
that opens the outbound leg for a resolved agent.

Audio Flow:
- Input: PCM16 @ 16kHz -> base64 -> {"user_audio_chunk": ...}
- Output: {"type": "audio", "audio_event": {"audio_base_64": ...}} -> PCM16 @ 16kHz

Keepalive: every {"type": "ping"} must be answered with a pong carrying the
same event_id, otherwise ElevenLabs drops the connection.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import structlog
from websockets.asyncio.client import ClientConnection, connect

from app.core.codec import decode_base64, encode_base64
from app.core.envelope import load_json_object


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AudioMessage:
    """Agent speech as raw PCM16 @ 16kHz (byte order as configured)."""

    pcm: bytes


@dataclass(frozen=True)
class PingMessage:
    """Keepalive that must be echoed back as a pong."""

    event_id: Any


@dataclass(frozen=True)
class OtherMessage:
    """Any message the bridge does not act on (transcripts, metadata, ...)."""

    type: Optional[str] = None


OutboundEvent = Union[AudioMessage, PingMessage, OtherMessage]


def parse_outbound(raw: str | bytes) -> OutboundEvent:
    """Parse one ConvAI text frame.

    Args:
        raw: Frame as received from the WebSocket

    Returns:
        AudioMessage, PingMessage, or OtherMessage for everything else

    Raises:
        EnvelopeError: If the frame is not a JSON object
        AudioFormatError: If an audio payload is not valid base64
    """
    data = load_json_object(raw)
    msg_type = data.get("type")

    if msg_type == "ping":
        ping_event = data.get("ping_event")
        if isinstance(ping_event, dict) and ping_event.get("event_id") is not None:
            return PingMessage(event_id=ping_event["event_id"])

    elif msg_type == "audio":
        audio_event = data.get("audio_event")
        audio_b64 = audio_event.get("audio_base_64") if isinstance(audio_event, dict) else None
        if audio_b64 and isinstance(audio_b64, str):
            return AudioMessage(pcm=decode_base64(audio_b64))

    return OtherMessage(type=msg_type if isinstance(msg_type, str) else None)


def pong_message(event_id: Any) -> str:
    """Build the pong reply for a ping, echoing its event_id verbatim."""
    return json.dumps({"type": "pong", "event_id": event_id})


def user_audio_chunk_message(pcm: bytes) -> str:
    """Build a user audio message from PCM16 @ 16kHz bytes."""
    return json.dumps({"user_audio_chunk": encode_base64(pcm)})


class ElevenLabsDialer:
    """Opens ConvAI conversation WebSockets."""

    WS_URL = "wss://api.elevenlabs.io/v1/convai/conversation"

    def __init__(
        self,
        ws_url: Optional[str] = None,
        api_key: Optional[str] = None,
        open_timeout: float = 10.0
    ) -> None:
        """Initialize dialer.

        Args:
            ws_url: Conversation endpoint (defaults to the public ConvAI URL)
            api_key: Optional xi-api-key header for private agents
            open_timeout: Handshake timeout in seconds
        """
        self._ws_url = ws_url or self.WS_URL
        self._api_key = api_key
        self._open_timeout = open_timeout

    def build_url(self, agent_id: str) -> str:
        """Get the conversation URL for an agent."""
        return f"{self._ws_url}?agent_id={quote(agent_id, safe='')}"

    def build_headers(self) -> Dict[str, str]:
        """Get handshake headers (empty when no API key is configured)."""
        if self._api_key:
            return {"xi-api-key": self._api_key}
        return {}

    async def connect(self, agent_id: str) -> ClientConnection:
        """Connect to ElevenLabs for one call.

        Args:
            agent_id: Resolved agent identifier

        Returns:
            Open client connection

        Raises:
            OSError: If the TCP/TLS connection fails
            websockets.exceptions.InvalidHandshake: If the upgrade is refused
            TimeoutError: If the handshake does not complete in time
        """
        logger.info(
            "Connecting to ElevenLabs",
            agent_id=agent_id,
            has_api_key=bool(self._api_key)
        )

        connection = await connect(
            self.build_url(agent_id),
            additional_headers=self.build_headers(),
            open_timeout=self._open_timeout,
            max_size=16 * 1024 * 1024
        )

        logger.info("ElevenLabs connected", agent_id=agent_id)
        return connection
