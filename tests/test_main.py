"""Tests for the HTTP interface of the note service."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from note_service.auth import TokenUnavailableError
from note_service.main import app, settings


@pytest.fixture
def client():
    # no context manager: the lifespan (database, real HTTP clients) is not started
    app.state.processor = MagicMock(name="processor")
    app.state.auth = MagicMock(name="auth")
    return TestClient(app)


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_webhook_schedules_processing(client):
    with patch("note_service.main.process_order_webhook", new_callable=AsyncMock) as mock_process:
        response = client.post("/webhooks/orders", json={
            "resource": "/orders/2000001", "topic": "orders_v2", "user_id": 123,
        })

    assert response.status_code == 200
    assert response.json() == {"status": "accepted", "orderId": "2000001"}
    mock_process.assert_called_once_with(app.state.processor, "2000001", settings.processing_timeout)


@pytest.mark.parametrize(
    "body",
    [b"not json", b"{}", b'{"resource": "   "}', b'{"resource": "/"}'],
)
def test_webhook_ignores_unusable_bodies(client, body):
    with patch("note_service.main.process_order_webhook", new_callable=AsyncMock) as mock_process:
        response = client.post("/webhooks/orders", content=body, headers={"Content-Type": "application/json"})

    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}
    mock_process.assert_not_called()


def test_oauth_callback_exchanges_code(client):
    app.state.auth.exchange_code = AsyncMock(return_value="APP_USR-1")

    response = client.get("/oauth/callback", params={"code": "TG-123"})

    assert response.status_code == 200
    assert response.json() == {"status": "authorized"}
    app.state.auth.exchange_code.assert_awaited_once_with("TG-123")


def test_oauth_callback_without_credentials(client):
    app.state.auth.exchange_code = AsyncMock(side_effect=TokenUnavailableError("missing"))

    response = client.get("/oauth/callback", params={"code": "TG-123"})

    assert response.status_code == 500


def test_oauth_callback_rejected_by_marketplace(client):
    app.state.auth.exchange_code = AsyncMock(side_effect=httpx.ConnectError("refused"))

    response = client.get("/oauth/callback", params={"code": "TG-123"})

    assert response.status_code == 502


def test_oauth_callback_requires_code(client):
    assert client.get("/oauth/callback").status_code == 422
