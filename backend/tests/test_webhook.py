"""
Tests for the Telegram webhook endpoint and the service endpoints.
"""

from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from chatrelay.api import telegram_webhook
from chatrelay.api.telegram_webhook import router
from chatrelay.channels.telegram import TelegramBot

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
UPDATE = {
    "update_id": 500,
    "message": {"message_id": 1, "chat": {"id": 42}, "text": "hello"},
}


@pytest.fixture(autouse=True)
def clear_processed_updates():
    telegram_webhook._processed_updates.clear()
    yield
    telegram_webhook._processed_updates.clear()


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def client(dispatcher):
    app = FastAPI()
    app.include_router(router)
    app.state.telegram_bot = TelegramBot(token="t", webhook_secret="s3cret")
    app.state.dispatcher = dispatcher
    return TestClient(app)


class TestTelegramWebhook:

    def test_update_is_submitted(self, client, dispatcher):
        resp = client.post("/telegram/webhook", json=UPDATE, headers={SECRET_HEADER: "s3cret"})

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        dispatcher.submit.assert_called_once_with({
            "type": "message",
            "update_id": 500,
            "chat_id": 42,
            "message_id": 1,
            "text": "hello",
        })

    def test_wrong_secret_rejected(self, client, dispatcher):
        resp = client.post("/telegram/webhook", json=UPDATE, headers={SECRET_HEADER: "nope"})
        assert resp.status_code == 403
        dispatcher.submit.assert_not_called()

    def test_missing_secret_rejected(self, client, dispatcher):
        resp = client.post("/telegram/webhook", json=UPDATE)
        assert resp.status_code == 403
        dispatcher.submit.assert_not_called()

    def test_duplicate_delivery_handled_once(self, client, dispatcher):
        for _ in range(3):
            resp = client.post("/telegram/webhook", json=UPDATE, headers={SECRET_HEADER: "s3cret"})
            assert resp.status_code == 200
        assert dispatcher.submit.call_count == 1

    def test_not_configured(self):
        app = FastAPI()
        app.include_router(router)
        resp = TestClient(app).post("/telegram/webhook", json=UPDATE)
        assert resp.status_code == 503


class TestProcessedUpdates:

    def test_oldest_ids_forgotten(self, monkeypatch):
        monkeypatch.setattr(telegram_webhook, "_MAX_PROCESSED_UPDATES", 2)
        assert telegram_webhook._seen_before(1) is False
        assert telegram_webhook._seen_before(2) is False
        assert telegram_webhook._seen_before(3) is False
        assert telegram_webhook._seen_before(2) is True
        assert telegram_webhook._seen_before(1) is False

    def test_missing_update_id_never_deduplicated(self):
        assert telegram_webhook._seen_before(None) is False
        assert telegram_webhook._seen_before(None) is False


class TestServiceEndpoints:
    """Root and health endpoints, without running the lifespan."""

    def test_root(self):
        from chatrelay.main import app
        resp = TestClient(app).get("/")
        assert resp.status_code == 200
        assert resp.json()["status"] == "running"

    def test_health(self):
        from chatrelay.main import app
        resp = TestClient(app).get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
