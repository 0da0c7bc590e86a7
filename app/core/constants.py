"""Audio and protocol constants for the Twilio <-> ElevenLabs bridge."""


class AudioConstants:
    """Audio format constants for the telephony and AI legs."""

    # Frame sizes
    MULAW_FRAME_SIZE = 160  # 20ms of μ-law @ 8kHz: (8000 * 20 * 1) / 1000 = 160 bytes

    # Logging intervals
    LOG_INTERVAL_FRAMES = 50   # Log every 50 media envelopes (1 second @ 20ms)


class CloseCodes:
    """WebSocket close codes used when tearing down a leg."""

    NORMAL = 1000
    POLICY_VIOLATION = 1008


# Prefix of the mark names sent to Twilio after each burst of agent audio
MARK_PREFIX = "ll"
