"""WebSocket server for Twilio Media Streams plus health and metrics routes.

Routes (single port):
    GET /healthz    -> 200 "ok"
    GET /metrics    -> 200 JSON counter snapshot
    WS  /twilio...  -> one MediaStreamBridge per connection
    anything else   -> 404
"""

import json
from http import HTTPStatus
from typing import Optional
from urllib.parse import urlsplit

import structlog
from websockets.asyncio.server import ServerConnection, serve
from websockets.http11 import Request, Response

from app.ai.elevenlabs_convai import ElevenLabsDialer
from app.bridge.audio_bridge import MediaStreamBridge
from app.config import Config
from app.core.metrics import BridgeMetrics

logger = structlog.get_logger(__name__)


class BridgeServer:
    """Accepts Twilio connections and serves the HTTP side routes."""

    TWILIO_PATH_PREFIX = "/twilio"

    def __init__(
        self,
        config: Config,
        metrics: BridgeMetrics,
        dialer: Optional[ElevenLabsDialer] = None
    ) -> None:
        """Initialize server.

        Args:
            config: Bridge configuration
            metrics: Process-wide counters, shared by all sessions
            dialer: ElevenLabs dialer (built from config if omitted)
        """
        self._config = config
        self._metrics = metrics
        self._dialer = dialer or ElevenLabsDialer(
            ws_url=config.elevenlabs.ws_url,
            api_key=config.elevenlabs.api_key
        )

    def process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        """Route a request before the WebSocket handshake.

        Returns:
            An HTTP response, or None to continue with the upgrade
        """
        path = urlsplit(request.path).path

        if path == "/healthz":
            return connection.respond(HTTPStatus.OK, "ok")

        if path == "/metrics":
            response = connection.respond(HTTPStatus.OK, json.dumps(self._metrics.snapshot()))
            del response.headers["Content-Type"]
            response.headers["Content-Type"] = "application/json"
            return response

        if path.startswith(self.TWILIO_PATH_PREFIX):
            return None

        logger.debug("Rejected request", path=path)
        return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")

    async def handle(self, connection: ServerConnection) -> None:
        """Bridge one accepted Twilio connection until both legs close."""
        bridge = MediaStreamBridge(connection, self._config, self._metrics, self._dialer)
        try:
            await bridge.run()
        except Exception as e:
            logger.error("Bridge crashed", error=str(e), exc_info=True)

    async def serve_forever(self) -> None:
        """Listen until cancelled."""
        async with serve(
            self.handle,
            self._config.system.host,
            self._config.system.port,
            process_request=self.process_request
        ) as server:
            logger.info(
                "Bridge listening",
                host=self._config.system.host,
                port=self._config.system.port
            )
            await server.serve_forever()
