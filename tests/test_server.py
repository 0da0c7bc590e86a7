"""Tests for HTTP routing in front of the WebSocket endpoint."""

import json
from http import HTTPStatus

import pytest
from websockets.datastructures import Headers
from websockets.http11 import Request, Response

from app.config import Config
from app.core.metrics import BridgeMetrics
from app.server import BridgeServer


class FakeServerConnection:
    """Builds responses the way ServerConnection.respond does."""

    def respond(self, status: HTTPStatus, text: str) -> Response:
        body = text.encode()
        headers = Headers([
            ("Content-Length", str(len(body))),
            ("Content-Type", "text/plain; charset=utf-8"),
        ])
        return Response(status.value, status.phrase, headers, body)


@pytest.fixture
def server(config: Config, metrics: BridgeMetrics) -> BridgeServer:
    return BridgeServer(config, metrics)


def route(server: BridgeServer, path: str) -> Response | None:
    return server.process_request(FakeServerConnection(), Request(path, Headers()))


class TestRouting:
    """Test process_request routing."""

    def test_healthz(self, server: BridgeServer) -> None:
        response = route(server, "/healthz")

        assert response.status_code == 200
        assert response.body == b"ok"

    def test_metrics(self, server: BridgeServer, metrics: BridgeMetrics) -> None:
        metrics.record_media_from_twilio(160)

        response = route(server, "/metrics")

        assert response.status_code == 200
        assert response.headers["Content-Type"] == "application/json"
        body = json.loads(response.body)
        assert body["bytesFromTwilio"] == 160
        assert body["chunksFromTwilio"] == 1

    @pytest.mark.parametrize("path", ["/twilio", "/twilio/stream", "/twilio?agent=1"])
    def test_twilio_upgrades_allowed(self, server: BridgeServer, path: str) -> None:
        assert route(server, path) is None

    @pytest.mark.parametrize("path", ["/", "/other", "/health"])
    def test_unknown_paths_rejected(self, server: BridgeServer, path: str) -> None:
        assert route(server, path).status_code == 404
