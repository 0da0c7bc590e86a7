"""Re-chunking of agent audio into Twilio-sized media frames."""

import time
from typing import Callable, Iterator, List, Tuple

from app.core.constants import MARK_PREFIX, AudioConstants
from app.twilio.media_stream import mark_envelope, media_envelope


class FramePacer:
    """Splits μ-law audio into 20ms media envelopes followed by one mark.

    Twilio plays media most smoothly when every frame is 160 bytes (20ms @
    8kHz). Arbitrary-length audio is cut into consecutive 160-byte chunks in
    order; only the last chunk may be shorter.
    """

    def __init__(
        self,
        frame_size: int = AudioConstants.MULAW_FRAME_SIZE,
        mark_prefix: str = MARK_PREFIX,
        clock: Callable[[], float] = time.time
    ) -> None:
        """Initialize pacer.

        Args:
            frame_size: Chunk size in bytes
            mark_prefix: Prefix of generated mark names
            clock: Wall clock in seconds, used to derive mark names

        Raises:
            ValueError: If frame_size is <= 0
        """
        if frame_size <= 0:
            raise ValueError(f"Frame size must be positive, got {frame_size}")

        self._frame_size = frame_size
        self._mark_prefix = mark_prefix
        self._clock = clock
        self._last_mark_ms = 0

    @property
    def frame_size(self) -> int:
        """Chunk size in bytes."""
        return self._frame_size

    def chunks(self, ulaw_data: bytes) -> Iterator[bytes]:
        """Iterate over fixed-size chunks of ulaw_data."""
        for offset in range(0, len(ulaw_data), self._frame_size):
            yield ulaw_data[offset:offset + self._frame_size]

    def media_frames(self, stream_sid: str, ulaw_data: bytes) -> Iterator[Tuple[str, int]]:
        """Iterate over media envelopes for ulaw_data.

        Yields:
            (envelope, chunk length in bytes) pairs
        """
        for chunk in self.chunks(ulaw_data):
            yield media_envelope(stream_sid, chunk), len(chunk)

    def next_mark_name(self) -> str:
        """Get a unique, time-derived mark name (``ll-<epoch ms>``).

        Names are strictly increasing within one pacer even when several
        bursts are sent in the same millisecond.
        """
        now_ms = int(self._clock() * 1000)
        self._last_mark_ms = max(now_ms, self._last_mark_ms + 1)
        return f"{self._mark_prefix}-{self._last_mark_ms}"

    def mark(self, stream_sid: str) -> str:
        """Build the trailing mark envelope for one burst."""
        return mark_envelope(stream_sid, self.next_mark_name())

    def pace(self, stream_sid: str, ulaw_data: bytes) -> List[str]:
        """Build the full burst for ulaw_data: media envelopes, then one mark."""
        envelopes = [envelope for envelope, _ in self.media_frames(stream_sid, ulaw_data)]
        envelopes.append(self.mark(stream_sid))
        return envelopes
