"""Integration tests for the /ws/analytics WebSocket endpoint."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import build_test_app
from routes.realtime_routes import router as realtime_router
from services.realtime import (
    ERROR_EVENT,
    GLOBAL_TOPIC,
    GLOBAL_UPDATE_EVENT,
    URL_CURRENT_EVENT,
)
from shared.datetime_utils import utc_now


@pytest.fixture
def app(click_store, url_store):
    return build_test_app(click_store, url_store, realtime_router)


@pytest.fixture
def client(app):
    return TestClient(app)


class TestAnalyticsSocket:
    def test_subscribe_url_sends_current_counters(self, app, client, click_store, url_store):
        url = url_store.add()
        click_store.add_event(url_id=url.id, clicked_at=utc_now() - timedelta(minutes=1))

        with client.websocket_connect("/ws/analytics") as ws:
            ws.send_json({"type": "subscribe:url", "short_code": "abc123"})
            message = ws.receive_json()
            assert message["event"] == URL_CURRENT_EVENT
            assert message["topic"] == "url:abc123"
            assert message["data"]["clicks_last_5_minutes"] == 1
            assert app.state.broadcaster.has_subscribers("url:abc123")

        # the server drops the subscription once the socket closes
        assert not app.state.broadcaster.has_subscribers("url:abc123")

    def test_subscribe_unknown_short_code(self, app, client):
        with client.websocket_connect("/ws/analytics") as ws:
            ws.send_json({"type": "subscribe:url", "short_code": "missing"})
            message = ws.receive_json()
            assert message["event"] == ERROR_EVENT
            assert message["data"]["code"] == "not_found"
            assert not app.state.broadcaster.has_subscribers("url:missing")

    def test_subscribe_real_time(self, app, client):
        with client.websocket_connect("/ws/analytics") as ws:
            ws.send_json({"type": "subscribe:real-time"})
            message = ws.receive_json()
            assert message["event"] == GLOBAL_UPDATE_EVENT
            assert message["topic"] == GLOBAL_TOPIC
            assert "statistics" in message["data"]
            assert app.state.broadcaster.has_subscribers(GLOBAL_TOPIC)

            ws.send_json({"type": "unsubscribe:real-time"})
            ws.send_json({"type": "request:real-time:current"})
            assert ws.receive_json()["event"] == GLOBAL_UPDATE_EVENT
            assert not app.state.broadcaster.has_subscribers(GLOBAL_TOPIC)

    def test_request_url_current(self, client, url_store):
        url_store.add()
        with client.websocket_connect("/ws/analytics") as ws:
            ws.send_json({"type": "request:url:current", "short_code": "abc123"})
            assert ws.receive_json()["event"] == URL_CURRENT_EVENT

    @pytest.mark.parametrize(
        "payload, field",
        [
            ({"type": "dance"}, "type"),
            ({"type": "subscribe:url"}, "short_code"),
            ({"type": "subscribe:url", "short_code": "  "}, "short_code"),
        ],
        ids=["unknown_type", "missing_short_code", "blank_short_code"],
    )
    def test_invalid_messages_keep_connection(self, client, payload, field):
        with client.websocket_connect("/ws/analytics") as ws:
            ws.send_json(payload)
            error = ws.receive_json()
            assert error["event"] == ERROR_EVENT
            assert error["data"]["field"] == field

            ws.send_json({"type": "request:real-time:current"})
            assert ws.receive_json()["event"] == GLOBAL_UPDATE_EVENT

    def test_non_json_frame(self, client):
        with client.websocket_connect("/ws/analytics") as ws:
            ws.send_text("not json")
            error = ws.receive_json()
            assert error["data"]["code"] == "validation_error"

    def test_non_object_message(self, client):
        with client.websocket_connect("/ws/analytics") as ws:
            ws.send_json(["subscribe:real-time"])
            assert ws.receive_json()["event"] == ERROR_EVENT
