"""Bridge configuration from an optional YAML file and environment variables.

Environment variables always win over the YAML file, so a container can ship
a base file and override single values per deployment.

Environment:
    BRIDGE_CONFIG_FILE   Optional YAML file with system/twilio/elevenlabs sections
    HOST, PORT           Listen address (default 0.0.0.0:8080)
    LOG_LEVEL            debug|info|warning|error (default info)
    LOG_FORMAT           console|json (default console)
    LOG_DIR              Also write logs to a timestamped file in this directory
    TWILIO_ACCOUNT_SID   Expected accountSid; the check is skipped when unset
    ELEVENLABS_AGENT_ID  Default agent when the call does not pass agent_id
    ELEVENLABS_API_KEY   Sent as xi-api-key when set
    ELEVEN_PCM_ENDIAN    le|be byte order of ElevenLabs PCM (default le)
    ELEVENLABS_WS_URL    Override the ConvAI conversation endpoint
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import structlog
import yaml

from app.core.codec import Endian


logger = structlog.get_logger(__name__)


def normalize_endian(value: Optional[str]) -> Endian:
    """Map a configured byte order to ``le``/``be``; anything but ``be`` is ``le``."""
    return "be" if (value or "").strip().lower() == "be" else "le"


def parse_port(value: Any) -> int:
    """Parse a TCP port.

    Raises:
        ValueError: If value is not an integer in 1..65535
    """
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid port: {value!r}")
    if not 1 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    return port


@dataclass
class SystemConfig:
    """Process-level settings."""

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"
    log_format: str = "console"
    log_dir: Optional[str] = None


@dataclass
class TwilioConfig:
    """Inbound leg settings."""

    account_sid: Optional[str] = None


@dataclass
class ElevenLabsConfig:
    """Outbound leg settings."""

    agent_id: Optional[str] = None
    api_key: Optional[str] = None
    pcm_endian: Endian = "le"
    ws_url: Optional[str] = None


@dataclass
class Config:
    """Complete bridge configuration."""

    system: SystemConfig = field(default_factory=SystemConfig)
    twilio: TwilioConfig = field(default_factory=TwilioConfig)
    elevenlabs: ElevenLabsConfig = field(default_factory=ElevenLabsConfig)

    def to_dict(self) -> Dict:
        """Convert to dictionary for logging, with secrets masked."""
        return {
            "host": self.system.host,
            "port": self.system.port,
            "log_level": self.system.log_level,
            "log_format": self.system.log_format,
            "twilio_account_check": self.twilio.account_sid is not None,
            "default_agent_id": self.elevenlabs.agent_id,
            "has_api_key": bool(self.elevenlabs.api_key),
            "pcm_endian": self.elevenlabs.pcm_endian,
        }


def _load_yaml(file_path: str | Path) -> Dict[str, Any]:
    """Load the optional YAML config file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not valid YAML or not a mapping of sections
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    logger.info("Loading config from YAML", file_path=str(file_path))

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML file: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("YAML file must contain a dictionary")

    for section in ("system", "twilio", "elevenlabs"):
        if not isinstance(data.get(section, {}), dict):
            raise ValueError(f"'{section}' section must be a dictionary")

    return data


def _empty_to_none(value: Optional[str]) -> Optional[str]:
    return value or None


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    config_file: Optional[str | Path] = None
) -> Config:
    """Build configuration from YAML (if any) and the environment.

    Args:
        environ: Environment mapping (defaults to os.environ)
        config_file: YAML path; falls back to BRIDGE_CONFIG_FILE

    Returns:
        Config instance

    Raises:
        FileNotFoundError: If a config file is specified but missing
        ValueError: If the file or any value is invalid
    """
    env = os.environ if environ is None else environ
    config_file = config_file or env.get("BRIDGE_CONFIG_FILE")
    data = _load_yaml(config_file) if config_file else {}

    system = data.get("system", {})
    twilio = data.get("twilio", {})
    elevenlabs = data.get("elevenlabs", {})

    return Config(
        system=SystemConfig(
            host=env.get("HOST") or system.get("host", "0.0.0.0"),
            port=parse_port(env.get("PORT") or system.get("port", 8080)),
            log_level=(env.get("LOG_LEVEL") or system.get("log_level", "info")).lower(),
            log_format=(env.get("LOG_FORMAT") or system.get("log_format", "console")).lower(),
            log_dir=_empty_to_none(env.get("LOG_DIR") or system.get("log_dir")),
        ),
        twilio=TwilioConfig(
            account_sid=_empty_to_none(env.get("TWILIO_ACCOUNT_SID") or twilio.get("account_sid")),
        ),
        elevenlabs=ElevenLabsConfig(
            agent_id=_empty_to_none(env.get("ELEVENLABS_AGENT_ID") or elevenlabs.get("agent_id")),
            api_key=_empty_to_none(env.get("ELEVENLABS_API_KEY") or elevenlabs.get("api_key")),
            pcm_endian=normalize_endian(env.get("ELEVEN_PCM_ENDIAN") or elevenlabs.get("pcm_endian")),
            ws_url=_empty_to_none(env.get("ELEVENLABS_WS_URL") or elevenlabs.get("ws_url")),
        ),
    )
