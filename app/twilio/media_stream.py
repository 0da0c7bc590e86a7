"""Twilio Media Streams envelope parsing and construction.

Twilio sends JSON text frames tagged by ``event``. The bridge acts on
``start``, ``media`` and ``stop``; ``mark`` echoes are recognised and
ignored. Anything else (``connected``, ``dtmf``, ...) is reported as an
unknown envelope so the caller can drop it.

Audio is always base64 inside the envelope; it is decoded here so the rest
of the bridge only sees raw μ-law bytes.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from app.core.codec import decode_base64, encode_base64
from app.core.envelope import EnvelopeError, UnknownEnvelopeError, load_json_object


@dataclass(frozen=True)
class StartEvent:
    """Stream start metadata."""

    stream_sid: str
    account_sid: str | None = None
    custom_parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MediaEvent:
    """One chunk of caller audio (raw μ-law @ 8kHz)."""

    audio: bytes


@dataclass(frozen=True)
class StopEvent:
    """End of call."""


@dataclass(frozen=True)
class MarkEvent:
    """Playback acknowledgement for a mark we sent earlier."""

    name: str | None = None


InboundEvent = Union[StartEvent, MediaEvent, StopEvent, MarkEvent]


def normalize_custom_parameters(raw: Any) -> Dict[str, Any]:
    """Normalize ``customParameters`` to a single ordered mapping.

    Twilio delivers either a flat object or a list of ``{"name", "value"}``
    pairs depending on how the stream was created. Both produce the same
    result; later duplicates win.

    Args:
        raw: The ``customParameters`` value from a start envelope

    Returns:
        Parameter name -> value mapping (empty if absent)

    Raises:
        EnvelopeError: If the value is neither a list nor a mapping
    """
    if raw is None:
        return {}

    if isinstance(raw, dict):
        return {str(name): value for name, value in raw.items()}

    if isinstance(raw, list):
        params: Dict[str, Any] = {}
        for entry in raw:
            if isinstance(entry, dict) and entry.get("name") is not None:
                params[str(entry["name"])] = entry.get("value")
        return params

    raise EnvelopeError(f"Unsupported customParameters type: {type(raw).__name__}")


def _parse_start(data: Dict[str, Any]) -> StartEvent:
    start = data.get("start")
    if not isinstance(start, dict):
        raise EnvelopeError("start envelope without start object")

    stream_sid = start.get("streamSid") or data.get("streamSid")
    if not stream_sid:
        raise EnvelopeError("start envelope without streamSid")

    return StartEvent(
        stream_sid=str(stream_sid),
        account_sid=start.get("accountSid"),
        custom_parameters=normalize_custom_parameters(start.get("customParameters")),
    )


def _parse_media(data: Dict[str, Any]) -> MediaEvent:
    media = data.get("media")
    payload = media.get("payload") if isinstance(media, dict) else None
    if not payload or not isinstance(payload, str):
        raise EnvelopeError("media envelope without payload")

    # AudioFormatError propagates: the envelope is fine, the audio is not
    return MediaEvent(audio=decode_base64(payload))


def parse_inbound(raw: str | bytes) -> InboundEvent:
    """Parse one Twilio text frame.

    Args:
        raw: Frame as received from the WebSocket

    Returns:
        The parsed event

    Raises:
        UnknownEnvelopeError: For an unrecognised ``event`` tag
        EnvelopeError: For invalid JSON or a recognised tag with missing fields
        AudioFormatError: For a media payload that is not valid base64
    """
    data = load_json_object(raw)
    event = data.get("event")

    if event == "start":
        return _parse_start(data)
    if event == "media":
        return _parse_media(data)
    if event == "stop":
        return StopEvent()
    if event == "mark":
        mark = data.get("mark")
        return MarkEvent(name=mark.get("name") if isinstance(mark, dict) else None)

    raise UnknownEnvelopeError(f"Unknown event: {event!r}")


def media_envelope(stream_sid: str, ulaw_chunk: bytes) -> str:
    """Build an outgoing ``media`` frame carrying μ-law audio."""
    return json.dumps({
        "event": "media",
        "streamSid": stream_sid,
        "media": {"payload": encode_base64(ulaw_chunk)},
    })


def mark_envelope(stream_sid: str, name: str) -> str:
    """Build an outgoing ``mark`` frame."""
    return json.dumps({
        "event": "mark",
        "streamSid": stream_sid,
        "mark": {"name": name},
    })
