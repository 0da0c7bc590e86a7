"""Bridge between Twilio Media Streams and ElevenLabs Conversational AI.

This module provides the per-call bridging layer:
- CallSession: Session state machine tying both legs' lifecycles together
- FramePacer: Re-chunks agent audio into 20ms Twilio media frames
- MediaStreamBridge: Runs one Twilio connection's session
"""

__all__ = [
    "CallSession",
    "SessionState",
    "FramePacer",
    "MediaStreamBridge",
]

from app.bridge.call_session import CallSession, SessionState
from app.bridge.frame_pacer import FramePacer
from app.bridge.audio_bridge import MediaStreamBridge
