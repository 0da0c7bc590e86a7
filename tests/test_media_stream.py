"""Tests for Twilio Media Streams envelope parsing."""

import json

import pytest

from app.core.codec import AudioFormatError
from app.core.envelope import EnvelopeError, UnknownEnvelopeError
from app.twilio.media_stream import (
    MarkEvent,
    MediaEvent,
    StartEvent,
    StopEvent,
    mark_envelope,
    media_envelope,
    normalize_custom_parameters,
    parse_inbound,
)
from tests.frames import media_frame, start_frame


class TestParseInbound:
    """Test inbound envelope parsing."""

    def test_start(self) -> None:
        """Test start envelope fields."""
        event = parse_inbound(start_frame())

        assert event == StartEvent(
            stream_sid="MZ0001",
            account_sid="AC123",
            custom_parameters={"agent_id": "agentX", "token": "t1"},
        )

    def test_custom_parameter_shapes_match(self) -> None:
        """List-of-pairs and flat mapping normalize to the same structure."""
        as_dict = parse_inbound(start_frame(as_list=False))
        as_list = parse_inbound(start_frame(as_list=True))

        assert as_dict.custom_parameters == as_list.custom_parameters

    def test_stream_sid_fallback(self) -> None:
        """streamSid may sit on the envelope instead of the start object."""
        raw = json.dumps({"event": "start", "streamSid": "MZ9", "start": {"accountSid": "AC1"}})

        event = parse_inbound(raw)

        assert event.stream_sid == "MZ9"
        assert event.custom_parameters == {}

    def test_start_without_stream_sid(self) -> None:
        """Test start without any stream identifier."""
        with pytest.raises(EnvelopeError, match="streamSid"):
            parse_inbound(json.dumps({"event": "start", "start": {}}))

    def test_media(self) -> None:
        """Test media payload is base64-decoded."""
        assert parse_inbound(media_frame(b'\x01\x02\x03')) == MediaEvent(audio=b'\x01\x02\x03')

    def test_media_without_payload(self) -> None:
        """Test media envelope missing its payload."""
        with pytest.raises(EnvelopeError):
            parse_inbound(json.dumps({"event": "media", "media": {}}))
        with pytest.raises(EnvelopeError):
            parse_inbound(json.dumps({"event": "media"}))

    def test_media_invalid_base64(self) -> None:
        """Test media payload that is not base64."""
        raw = json.dumps({"event": "media", "media": {"payload": "%%%"}})
        with pytest.raises(AudioFormatError):
            parse_inbound(raw)

    def test_stop_and_mark(self) -> None:
        """Test stop and mark echoes."""
        assert parse_inbound('{"event": "stop", "stop": {}}') == StopEvent()
        assert parse_inbound('{"event": "mark", "mark": {"name": "ll-1"}}') == MarkEvent(name="ll-1")

    def test_unknown_event(self) -> None:
        """Test unrecognised tags."""
        with pytest.raises(UnknownEnvelopeError):
            parse_inbound('{"event": "connected", "protocol": "Call"}')

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", "42", b'\xff\xfe'])
    def test_malformed(self, raw: str | bytes) -> None:
        """Test frames that are not JSON objects."""
        with pytest.raises(EnvelopeError):
            parse_inbound(raw)


class TestCustomParameters:
    """Test customParameters normalization."""

    def test_absent(self) -> None:
        assert normalize_custom_parameters(None) == {}

    def test_pairs_keep_order_and_skip_nameless(self) -> None:
        """Test list form ordering and invalid entries."""
        params = normalize_custom_parameters([
            {"name": "b", "value": "2"},
            {"value": "orphan"},
            "junk",
            {"name": "a", "value": "1"},
        ])

        assert list(params.items()) == [("b", "2"), ("a", "1")]

    def test_unsupported_type(self) -> None:
        with pytest.raises(EnvelopeError):
            normalize_custom_parameters("agent_id=x")


class TestBuilders:
    """Test outgoing envelope construction."""

    def test_media_envelope(self) -> None:
        assert json.loads(media_envelope("MZ1", b'\xff\xff')) == {
            "event": "media",
            "streamSid": "MZ1",
            "media": {"payload": "//8="},
        }

    def test_mark_envelope(self) -> None:
        assert json.loads(mark_envelope("MZ1", "ll-5")) == {
            "event": "mark",
            "streamSid": "MZ1",
            "mark": {"name": "ll-5"},
        }
