"""Process-wide bridge counters."""

import threading
from typing import Dict, Protocol, runtime_checkable


@runtime_checkable
class MetricsSink(Protocol):
    """Increment operations the bridge reports into."""

    def record_twilio_connection(self) -> None:
        ...

    def record_eleven_connection(self) -> None:
        ...

    def record_media_from_twilio(self, byte_count: int) -> None:
        ...

    def record_media_to_twilio(self, byte_count: int) -> None:
        ...

    def record_chunk_from_eleven(self) -> None:
        ...


class BridgeMetrics:
    """Monotonic counters shared by all sessions of the process.

    Constructed once at startup and passed into every session. Counters
    never decrease and there is no reset.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._twilio_connections = 0
        self._eleven_connections = 0
        self._bytes_from_twilio = 0
        self._bytes_to_twilio = 0
        self._chunks_from_eleven = 0
        self._chunks_from_twilio = 0

    def record_twilio_connection(self) -> None:
        with self._lock:
            self._twilio_connections += 1

    def record_eleven_connection(self) -> None:
        with self._lock:
            self._eleven_connections += 1

    def record_media_from_twilio(self, byte_count: int) -> None:
        """Count one inbound media envelope carrying byte_count μ-law bytes."""
        with self._lock:
            self._bytes_from_twilio += byte_count
            self._chunks_from_twilio += 1

    def record_media_to_twilio(self, byte_count: int) -> None:
        with self._lock:
            self._bytes_to_twilio += byte_count

    def record_chunk_from_eleven(self) -> None:
        with self._lock:
            self._chunks_from_eleven += 1

    def snapshot(self) -> Dict[str, int]:
        """Get a point-in-time copy of all counters.

        Returns:
            Counter dictionary keyed the way the /metrics endpoint exposes it
        """
        with self._lock:
            return {
                "twilioConnections": self._twilio_connections,
                "elevenConnections": self._eleven_connections,
                "bytesFromTwilio": self._bytes_from_twilio,
                "bytesToTwilio": self._bytes_to_twilio,
                "chunksFrom11L": self._chunks_from_eleven,
                "chunksFromTwilio": self._chunks_from_twilio,
            }
