"""Tests for the WhatsApp webhook routes."""

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from vigil.notifications.compliance import ControlCommand, InboundResult
from vigil_api.routes.webhooks import router

SECRET = "app-secret"


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("WHATSAPP_APP_SECRET", SECRET)
    monkeypatch.setenv("WHATSAPP_VERIFY_TOKEN", "verify-me")
    app = FastAPI()
    app.include_router(router)
    return TestClient(app)


def signed_post(client, payload: dict, secret: str = SECRET):
    body = json.dumps(payload).encode()
    signature = "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return client.post(
        "/api/webhooks/whatsapp",
        content=body,
        headers={"X-Hub-Signature-256": signature, "Content-Type": "application/json"},
    )


def text_payload(*messages):
    return {
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "messages": [
                                {"from": phone, "id": f"m{i}", "type": "text", "text": {"body": text}}
                                for i, (phone, text) in enumerate(messages)
                            ]
                        }
                    }
                ]
            }
        ]
    }


class TestHandshake:
    def test_echoes_challenge(self, client):
        response = client.get(
            "/api/webhooks/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "123"},
        )
        assert response.status_code == 200
        assert response.text == "123"

    def test_wrong_token(self, client):
        response = client.get(
            "/api/webhooks/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "123"},
        )
        assert response.status_code == 403


class TestInbound:
    def test_rejects_bad_signature(self, client):
        with patch(
            "vigil_api.routes.webhooks.handle_inbound_message", new_callable=AsyncMock
        ) as mock_handle:
            response = signed_post(client, text_payload(("15550001", "STOP")), secret="wrong")

        assert response.status_code == 401
        mock_handle.assert_not_awaited()

    def test_keyword_gets_reply(self, client):
        result = InboundResult(holder_id=42, command=ControlCommand("opt_out"), state=None)
        with patch(
            "vigil_api.routes.webhooks.handle_inbound_message",
            new_callable=AsyncMock,
            return_value=result,
        ) as mock_handle, patch(
            "vigil_api.routes.webhooks.send_keyword_reply", new_callable=AsyncMock
        ) as mock_reply:
            response = signed_post(client, text_payload(("15550001", "STOP")))

        assert response.json() == {"status": "ok", "processed": 1}
        mock_handle.assert_awaited_once_with("+15550001", "STOP")
        mock_reply.assert_awaited_once_with("+15550001", result)

    def test_ordinary_message_gets_no_reply(self, client):
        result = InboundResult(holder_id=42, command=None, state=None)
        with patch(
            "vigil_api.routes.webhooks.handle_inbound_message",
            new_callable=AsyncMock,
            return_value=result,
        ), patch(
            "vigil_api.routes.webhooks.send_keyword_reply", new_callable=AsyncMock
        ) as mock_reply:
            response = signed_post(client, text_payload(("15550001", "Amen")))

        assert response.json()["processed"] == 1
        mock_reply.assert_not_awaited()

    def test_one_failure_does_not_stop_the_batch(self, client):
        ok = InboundResult(holder_id=43, command=None, state=None)
        with patch(
            "vigil_api.routes.webhooks.handle_inbound_message",
            new_callable=AsyncMock,
            side_effect=[RuntimeError("db down"), ok],
        ), patch("vigil_api.routes.webhooks.sentry_sdk") as mock_sentry:
            response = signed_post(
                client, text_payload(("15550001", "hi"), ("15550002", "hello"))
            )

        assert response.status_code == 200
        assert response.json()["processed"] == 1
        mock_sentry.capture_exception.assert_called_once()

    def test_status_callback_processes_nothing(self, client):
        response = signed_post(
            client, {"entry": [{"changes": [{"value": {"statuses": [{"status": "read"}]}}]}]}
        )
        assert response.json() == {"status": "ok", "processed": 0}
