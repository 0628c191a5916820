"""Health and live-channel tests."""

import pytest
from starlette.websockets import WebSocketDisconnect

from safety_engine.core.security import create_access_token


def test_health_returns_ok(client):
    """GET /health returns status ok plus live connection counts."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_ws_ping_pong(client):
    token = create_access_token("dash-1", role="operator")
    with client.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_text("ping")
        assert ws.receive_json() == {"event": "pong"}
        assert client.get("/health").json()["ws_dashboards"] == 1


def test_ws_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=garbage") as ws:
            ws.receive_text()
    assert exc.value.code == 4003
