"""HTTP surface: /health and /webhook status codes and bodies.

The lifespan is not run; app.state is populated directly so the endpoint is
exercised against a mocked pipeline and the local lock backend.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.conversation.lock import LockManager
from src.gateway.app import app
from src.pipeline import replies
from src.pipeline.engine import PipelineReply


@pytest.fixture
def pipeline() -> MagicMock:
    mock = MagicMock()
    mock.handle = AsyncMock(return_value=PipelineReply("Expense logged: $5.00 for nails.", "executed"))
    return mock


@pytest.fixture
def client(pipeline):
    app.state.pipeline = pipeline
    app.state.lock_manager = LockManager(None)
    # Not used as a context manager: the lifespan (DB, Telegram) stays off.
    return TestClient(app)


def _body(**overrides):
    body = {
        "from_identity": "whatsapp:+14165550000",
        "text": "expense 5 nails",
        "message_id": "wamid.1",
    }
    body.update(overrides)
    return body


class TestHealth:
    def test_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestWebhook:
    def test_turn_reply(self, client, pipeline):
        response = client.post("/webhook", json=_body())
        assert response.status_code == 200
        assert response.json() == {"reply": "Expense logged: $5.00 for nails.", "phase": "executed"}
        message = pipeline.handle.call_args.args[0]
        assert message.text == "expense 5 nails"

    def test_attachments_passed_through(self, client, pipeline):
        response = client.post(
            "/webhook",
            json=_body(attachments=[{"url": "https://m.example/r.jpg", "content_type": "image/jpeg"}]),
        )
        assert response.status_code == 200
        message = pipeline.handle.call_args.args[0]
        assert message.media.url == "https://m.example/r.jpg"

    def test_busy_identity_gets_busy_reply(self, client, pipeline):
        app.state.lock_manager = MagicMock()
        app.state.lock_manager.acquire = AsyncMock(return_value=None)
        response = client.post("/webhook", json=_body())
        assert response.status_code == 200
        assert response.json() == {"reply": replies.BUSY, "phase": "busy"}
        pipeline.handle.assert_not_awaited()

    def test_bad_identity_is_400(self, client):
        response = client.post("/webhook", json=_body(from_identity="   "))
        assert response.status_code == 400
        assert response.json()["code"] == "BAD_IDENTITY"

    def test_missing_message_id_is_422(self, client):
        body = _body()
        del body["message_id"]
        response = client.post("/webhook", json=body)
        assert response.status_code == 422
