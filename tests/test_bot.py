from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from switchboard.catalog import CatalogCache, static_loader
from switchboard.config import Settings
from switchboard.pipeline import Services
from sample_catalog import SHELF, TAP, TV

# bot.py calls validate_config() at import time, which sys.exit(1) if env vars missing.
# Patch it so the import succeeds in test environment.
with patch("switchboard.config.validate_config"):
    from switchboard.bot import create_app


@pytest.fixture
def client():
    services = Services(
        settings=Settings(catalog_url="static", analysis_debounce_ms=10, tier2_debounce_ms=20),
        catalog=CatalogCache(static_loader([TAP, TV, SHELF])),
    )
    with TestClient(create_app(services)) as test_client:
        yield test_client


def _receive_until(ws, event_type):
    messages = []
    while True:
        message = ws.receive_json()
        messages.append(message)
        if message["type"] == event_type:
            return messages


class TestHttp:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.text == "ok"

    def test_no_active_calls(self, client):
        assert client.get("/calls/active").json() == {"calls": []}


class TestCallWebsocket:
    def test_full_call(self, client):
        with client.websocket_connect("/ws/calls/CA123") as ws:
            ws.send_json({"event": "start", "phone_number": "+447700900123"})
            started = ws.receive_json()
            assert started["type"] == "session_started"
            assert started["session_id"] == "CA123"

            active = client.get("/calls/active").json()["calls"]
            assert [c["call_sid"] for c in active] == ["CA123"]
            assert active[0]["phone_number"] == "+447700900123"

            ws.send_json({"event": "segment", "text": "Mount my TV please"})
            assert ws.receive_json()["type"] == "segment_received"
            ws.send_json({"event": "stop"})
            messages = _receive_until(ws, "session_closed")

        closed = messages[-1]["payload"]
        assert closed["final_transcript"] == "Mount my TV please"
        assert closed["final_decision"]["next_route"] == "INSTANT_PRICE"
        assert client.get("/calls/active").json() == {"calls": []}

    def test_unknown_and_bad_messages_ignored(self, client):
        with client.websocket_connect("/ws/calls/CA124") as ws:
            ws.send_text("not json")
            ws.send_json({"event": "dance"})
            ws.send_json({"event": "segment", "text": "Fix my dripping tap"})
            assert _receive_until(ws, "segment_received")[-1]["payload"]["text"] == "Fix my dripping tap"
            ws.send_json({"event": "stop"})
            messages = _receive_until(ws, "session_closed")
        assert messages[-1]["payload"]["final_decision"]["total_matched_price_pence"] == 6500

    def test_duplicate_call_rejected(self, client):
        with client.websocket_connect("/ws/calls/CA125") as first:
            first.send_json({"event": "start"})
            first.receive_json()
            with client.websocket_connect("/ws/calls/CA125") as second:
                error = second.receive_json()
                assert error["type"] == "error"
                with pytest.raises(WebSocketDisconnect) as exc:
                    second.receive_json()
                assert exc.value.code == 1008
            first.send_json({"event": "stop"})
            _receive_until(first, "session_closed")


class TestTwilioWebsocket:
    def test_rejected_without_deepgram_key(self, client):
        with client.websocket_connect("/ws/twilio") as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_text()
            assert exc.value.code == 1011
