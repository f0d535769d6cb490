"""Tests for the outbound API."""

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from conftest import build_test_state, mock_client


def client_for(settings, handler):
    state = build_test_state(settings, http_client=mock_client(handler))
    return TestClient(create_app(testing=True, state=state))


def outbound_body(channel="line", **message):
    payload = {"channel_type": channel, "channel_user_id": "U-customer", "text": "안녕하세요"}
    payload.update(message)
    return {"account_id": "U-bot", "message": payload}


def test_outbound_sends_through_adapter(settings):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={})

    with client_for(settings, handler) as client:
        resp = client.post("/outbound", json=outbound_body())
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["success"] is True
    assert data["message_id"].startswith("line_")
    assert requests[0].url.path == "/v2/bot/message/push"


def test_outbound_platform_failure_is_502(settings):
    with client_for(settings, lambda request: httpx.Response(401, text="invalid token")) as client:
        resp = client.post("/outbound", json=outbound_body())
    assert resp.status_code == 502


@pytest.mark.parametrize(
    "body",
    [
        outbound_body(channel="telegram"),
        outbound_body(text=None),
        outbound_body(media_url="https://cdn/1.png"),
    ],
)
def test_outbound_invalid_message_is_422(settings, body):
    with client_for(settings, lambda request: httpx.Response(200, json={})) as client:
        assert client.post("/outbound", json=body).status_code == 422
