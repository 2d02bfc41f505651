"""
Tests for the POST /webhook endpoint.

Tests cover:
- Valid signature with a delivered reply
- Dropped group messages and admin commands
- Invalid/missing signature (401)
- Validation errors (422)
"""

import os
import hmac
import hashlib
import json
import pytest
from fastapi.testclient import TestClient

from wabot.admin import HELP_REPLY
from wabot.main import app
from wabot.storage import Base, engine

from fakes import ADMIN, FakeGenerator


# Test configuration from environment
TEST_WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]


def compute_signature(body: str, secret: str) -> str:
    """Compute HMAC-SHA256 signature for request body."""
    return hmac.new(
        secret.encode("utf-8"),
        body.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


def post_signed(client, body: str):
    return client.post(
        "/webhook",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Signature": compute_signature(body, TEST_WEBHOOK_SECRET),
        }
    )


@pytest.fixture
def generator():
    return FakeGenerator(reply="Hello from the bot")


@pytest.fixture(scope="function")
def client(monkeypatch, generator):
    """Create test client with fresh database and a fake generator for each test."""
    monkeypatch.setattr("wabot.main.create_generator", lambda *args, **kwargs: generator)

    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def valid_message_body() -> str:
    """Return a valid message JSON body."""
    return '{"message_id":"m1","from":"14155550100@c.us","ts":"2025-01-15T10:00:00Z","text":"Hello"}'


@pytest.fixture
def valid_signature(valid_message_body: str) -> str:
    """Compute valid signature for test message."""
    return compute_signature(valid_message_body, TEST_WEBHOOK_SECRET)


class TestWebhookValidSignature:
    """Test webhook with valid signatures."""

    def test_text_message_delivered(self, client, generator, valid_message_body, valid_signature):
        """A signed text message gets a generated reply."""
        response = client.post(
            "/webhook",
            content=valid_message_body,
            headers={
                "Content-Type": "application/json",
                "X-Signature": valid_signature
            }
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "outcome": "delivered"}
        assert client.app.state.transport.outbox == [("14155550100@c.us", "Hello from the bot")]
        assert generator.calls == [([], "Hello")]

    def test_group_message_dropped(self, client, generator):
        body = json.dumps({
            "message_id": "g1",
            "from": "120363000000@g.us",
            "author": "14155550100@c.us",
            "ts": "2025-01-15T10:00:00Z",
            "text": "hi all",
        })

        response = post_signed(client, body)

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "outcome": "dropped"}
        assert client.app.state.transport.outbox == []
        assert generator.calls == []

    def test_message_without_text_dropped(self, client):
        body = '{"message_id":"m_notext","from":"14155550100@c.us","ts":"2025-01-15T10:00:00Z"}'

        response = post_signed(client, body)

        assert response.status_code == 200
        assert response.json()["outcome"] == "dropped"

    def test_admin_help(self, client, generator):
        body = json.dumps({
            "message_id": "c1",
            "from": ADMIN,
            "ts": "2025-01-15T10:00:00Z",
            "text": "/help",
        })

        response = post_signed(client, body)

        assert response.json()["outcome"] == "delivered"
        assert client.app.state.transport.outbox == [(ADMIN, HELP_REPLY)]
        assert generator.calls == []

    def test_media_message(self, client):
        body = json.dumps({
            "message_id": "img1",
            "from": "14155550100@c.us",
            "ts": "2025-01-15T10:00:00Z",
            "type": "image",
            "has_media": True,
        })

        response = post_signed(client, body)

        assert response.json()["outcome"] == "delivered"
        recipient, text = client.app.state.transport.outbox[0]
        assert recipient == "14155550100@c.us"
        assert "image file" in text

    def test_response_includes_request_id_header(self, client, valid_message_body):
        response = post_signed(client, valid_message_body)

        assert "x-request-id" in response.headers


class TestWebhookInvalidSignature:
    """Test webhook with invalid or missing signatures."""

    def test_missing_signature_header(self, client, valid_message_body):
        """Test request without X-Signature header returns 401."""
        response = client.post(
            "/webhook",
            content=valid_message_body,
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "invalid signature"}

    def test_invalid_signature(self, client, valid_message_body):
        """Test request with wrong signature returns 401."""
        response = client.post(
            "/webhook",
            content=valid_message_body,
            headers={
                "Content-Type": "application/json",
                "X-Signature": "invalid_signature_123"
            }
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "invalid signature"}

    def test_signature_with_different_body(self, client, valid_signature):
        """Test signature computed for different body returns 401."""
        different_body = '{"message_id":"m2","from":"14155550100@c.us","ts":"2025-01-15T10:00:00Z","text":"Different"}'

        response = client.post(
            "/webhook",
            content=different_body,
            headers={
                "Content-Type": "application/json",
                "X-Signature": valid_signature
            }
        )

        assert response.status_code == 401

    def test_rejected_message_not_processed(self, client, generator, valid_message_body):
        wrong_signature = compute_signature(valid_message_body, "wrong_secret")

        client.post(
            "/webhook",
            content=valid_message_body,
            headers={"Content-Type": "application/json", "X-Signature": wrong_signature}
        )

        assert generator.calls == []
        assert client.app.state.transport.outbox == []


class TestWebhookValidationErrors:
    """Test webhook validation errors (422)."""

    @pytest.mark.parametrize("body", [
        "not valid json",
        '{"from":"14155550100@c.us","ts":"2025-01-15T10:00:00Z","text":"Hello"}',
        '{"message_id":"","from":"14155550100@c.us","ts":"2025-01-15T10:00:00Z","text":"Hello"}',
        '{"message_id":"m1","from":"1415 555","ts":"2025-01-15T10:00:00Z","text":"Hello"}',
        '{"message_id":"m1","from":"14155550100@c.us","ts":"2025-01-15T10:00:00","text":"Hello"}',
        '{"message_id":"m1","from":"14155550100@c.us","ts":"not-a-timestamp","text":"Hello"}',
    ])
    def test_invalid_payload(self, client, body):
        response = post_signed(client, body)

        assert response.status_code == 422

    def test_text_too_long(self, client):
        """Test text exceeding 4096 characters returns 422."""
        body = json.dumps({
            "message_id": "m1",
            "from": "14155550100@c.us",
            "ts": "2025-01-15T10:00:00Z",
            "text": "x" * 4097,
        })

        response = post_signed(client, body)

        assert response.status_code == 422

    def test_body_not_utf8(self, client, generator):
        """A correctly signed body that is not UTF-8 is a validation error."""
        body = b'{"message_id":"m1","from":"14155550100@c.us","ts":"2025-01-15T10:00:00Z","text":"\xff\xfe"}'
        signature = hmac.new(TEST_WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()

        response = client.post(
            "/webhook",
            content=body,
            headers={"Content-Type": "application/json", "X-Signature": signature},
        )

        assert response.status_code == 422
        assert generator.calls == []
