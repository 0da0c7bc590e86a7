"""Main application entry point for the Twilio-to-AI bridge."""

import asyncio
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from app.config import Config, SystemConfig, load_config
from app.core.metrics import BridgeMetrics
from app.server import BridgeServer


__version__ = "0.1.0"


def setup_logging(system: SystemConfig) -> None:
    """Configure structured logging, optionally mirrored to a file.

    Args:
        system: Process-level settings (level, format, log directory)
    """
    log_level = getattr(logging, system.log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file: Optional[Path] = None
    if system.log_dir:
        log_dir = Path(system.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"twilio-to-ai_{timestamp}.log"
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=handlers,
        force=True
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if system.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        structlog.get_logger(__name__).info(f"Logging to file: {log_file}")


async def main(config: Config) -> None:
    """Run the bridge server until SIGINT/SIGTERM."""
    logger = structlog.get_logger(__name__)

    logger.info(
        "Twilio-to-AI Bridge starting",
        version=__version__,
        **config.to_dict()
    )

    server_task = asyncio.create_task(
        BridgeServer(config, BridgeMetrics()).serve_forever(),
        name="bridge-server"
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, server_task.cancel)

    try:
        await server_task
    except asyncio.CancelledError:
        logger.info("Shutting down...")


def cli() -> None:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Twilio-to-AI Bridge: Twilio Media Streams <-> ElevenLabs Conversational AI"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--config",
        help="YAML config file (overrides BRIDGE_CONFIG_FILE)"
    )

    args = parser.parse_args()

    # Configuration errors are fatal before anything starts
    try:
        config = load_config(config_file=args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config.system)
    logger = structlog.get_logger(__name__)

    try:
        asyncio.run(main(config))
    except KeyboardInterrupt:
        logger.info("Shutdown complete")
        sys.exit(0)
    except Exception as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
