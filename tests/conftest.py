"""Shared test fixtures and configuration."""

import pytest

from app.bridge.call_session import CallSession
from app.bridge.frame_pacer import FramePacer
from app.config import Config, ElevenLabsConfig, TwilioConfig
from app.core.metrics import BridgeMetrics
from tests.fake_legs import FakeDialer, FakeLeg, SessionOutbox
from tests.frames import ACCOUNT_SID


@pytest.fixture
def config() -> Config:
    """Config expecting ACCOUNT_SID and no default agent."""
    return Config(twilio=TwilioConfig(account_sid=ACCOUNT_SID))


@pytest.fixture
def metrics() -> BridgeMetrics:
    """Fresh counters."""
    return BridgeMetrics()


@pytest.fixture
def twilio_leg() -> FakeLeg:
    """Inbound fake leg."""
    return FakeLeg()


@pytest.fixture
def dialer() -> FakeDialer:
    """Dialer handing out fake ElevenLabs legs."""
    return FakeDialer()


@pytest.fixture
def outbox() -> SessionOutbox:
    """Collects events the session posts to itself."""
    return SessionOutbox()


@pytest.fixture
def pacer() -> FramePacer:
    """Pacer with a frozen clock."""
    return FramePacer(clock=lambda: 1_700_000_000.0)


@pytest.fixture
def session(
    twilio_leg: FakeLeg,
    dialer: FakeDialer,
    config: Config,
    metrics: BridgeMetrics,
    outbox: SessionOutbox,
    pacer: FramePacer
) -> CallSession:
    """Session in PENDING state."""
    return CallSession(twilio_leg, dialer, config, metrics, outbox.emit, pacer=pacer)


@pytest.fixture
def be_config() -> Config:
    """Config with big-endian ElevenLabs PCM."""
    return Config(
        twilio=TwilioConfig(account_sid=ACCOUNT_SID),
        elevenlabs=ElevenLabsConfig(pcm_endian="be"),
    )
