"""Tests for webhook routes."""

import json

import pytest
from fastapi.testclient import TestClient

from app.adapters.wechat import wechat_signature
from app.core.credentials import CredentialResolver, InMemoryCredentialStore
from app.main import create_app
from app.routers.webhooks import KAKAO_ACK_TEXT
from app.schemas.messages import Channel
from conftest import (
    KAKAO_KEY,
    META_VERIFY_TOKEN,
    WECHAT_TOKEN,
    build_test_state,
    line_signature,
    make_settings,
    meta_signature,
)


@pytest.fixture
def state(settings):
    return build_test_state(settings)


@pytest.fixture
def client(state):
    """Client over an app whose inbound command is mocked out."""
    app = create_app(testing=True, state=state)
    with TestClient(app) as c:
        yield c


def line_body(text="진료시간이 어떻게 되나요?"):
    return json.dumps(
        {
            "destination": "U-bot",
            "events": [
                {
                    "type": "message",
                    "timestamp": 1700000000000,
                    "source": {"type": "user", "userId": "U-customer"},
                    "message": {"id": "m1", "type": "text", "text": text},
                }
            ],
        }
    ).encode()


def kakao_body():
    return json.dumps(
        {
            "bot": {"id": "bot-1"},
            "userRequest": {"utterance": "예약 문의", "user": {"id": "kakao-user"}},
            "action": {"params": {}},
        }
    ).encode()


def facebook_body():
    return json.dumps(
        {
            "object": "page",
            "entry": [
                {
                    "id": "PAGE-1",
                    "messaging": [
                        {
                            "sender": {"id": "PSID-1"},
                            "recipient": {"id": "PAGE-1"},
                            "timestamp": 1700000000000,
                            "message": {"mid": "mid.1", "text": "가격 문의"},
                        }
                    ],
                }
            ],
        }
    ).encode()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_line_webhook_dispatches_messages(client, state):
    body = line_body()
    resp = client.post(
        "/webhooks/line", content=body, headers={"x-line-signature": line_signature(body)}
    )
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    state.inbound.execute.assert_awaited_once()
    message = state.inbound.execute.await_args.args[0]
    assert message.channel_type == Channel.LINE
    assert message.text == "진료시간이 어떻게 되나요?"


def test_invalid_signature_is_rejected_before_parsing(client, state):
    body = line_body()
    resp = client.post(
        "/webhooks/line", content=body, headers={"x-line-signature": line_signature(body + b" ")}
    )
    assert resp.status_code == 401
    assert client.post("/webhooks/line", content=body).status_code == 401
    state.inbound.execute.assert_not_awaited()


def test_malformed_body_is_400(client):
    body = b"{not json"
    resp = client.post(
        "/webhooks/line", content=body, headers={"x-line-signature": line_signature(body)}
    )
    assert resp.status_code == 400


def test_unknown_channel_is_404(client):
    assert client.post("/webhooks/telegram", content=b"{}").status_code == 404


def test_unconfigured_secret_fails_closed():
    settings = make_settings(line_channel_secret=None)
    app = create_app(testing=True, state=build_test_state(settings))
    with TestClient(app) as c:
        body = line_body()
        resp = c.post(
            "/webhooks/line", content=body, headers={"x-line-signature": line_signature(body)}
        )
    assert resp.status_code == 401


def test_kakao_gets_immediate_skill_ack(client, state):
    resp = client.post(
        "/webhooks/kakao", content=kakao_body(), headers={"x-kakao-signature": KAKAO_KEY}
    )
    assert resp.status_code == 200
    assert resp.json()["template"]["outputs"][0]["simpleText"]["text"] == KAKAO_ACK_TEXT
    assert state.inbound.execute.await_args.args[0].channel_account_id == "bot-1"


def test_account_route_uses_stored_secret(settings, fernet_key):
    store = InMemoryCredentialStore()
    store.put(Channel.LINE, "U-bot", {"access_token": "t", "channel_secret": "account-secret"})
    state = build_test_state(settings, credentials=CredentialResolver(store=store, settings=settings))
    body = line_body()
    with TestClient(create_app(testing=True, state=state)) as c:
        ok = c.post(
            "/webhooks/line/U-bot",
            content=body,
            headers={"x-line-signature": line_signature(body, "account-secret")},
        )
        default_secret = c.post(
            "/webhooks/line/U-bot",
            content=body,
            headers={"x-line-signature": line_signature(body)},
        )
    assert ok.status_code == 200
    assert default_secret.status_code == 401


def test_meta_subscription_handshake(client):
    params = {"hub.mode": "subscribe", "hub.verify_token": META_VERIFY_TOKEN, "hub.challenge": "8812"}
    resp = client.get("/webhooks/meta", params=params)
    assert resp.status_code == 200
    assert resp.text == "8812"
    params["hub.verify_token"] = "wrong"
    assert client.get("/webhooks/meta", params=params).status_code == 403


def test_meta_webhook_routes_by_object(client, state):
    body = facebook_body()
    resp = client.post(
        "/webhooks/meta", content=body, headers={"x-hub-signature-256": meta_signature(body)}
    )
    assert resp.status_code == 200
    assert state.inbound.execute.await_args.args[0].channel_type == Channel.FACEBOOK

    other = json.dumps({"object": "user", "entry": []}).encode()
    resp = client.post(
        "/webhooks/meta", content=other, headers={"x-hub-signature-256": meta_signature(other)}
    )
    assert resp.status_code == 400


def test_meta_webhook_bad_signature(client):
    body = facebook_body()
    resp = client.post(
        "/webhooks/meta", content=body, headers={"x-hub-signature-256": meta_signature(body, "nope")}
    )
    assert resp.status_code == 401


def test_wechat_url_verification(client):
    params = {
        "signature": wechat_signature(WECHAT_TOKEN, "1700000000", "n1"),
        "timestamp": "1700000000",
        "nonce": "n1",
        "echostr": "echo-123",
    }
    resp = client.get("/webhooks/wechat", params=params)
    assert resp.status_code == 200
    assert resp.text == "echo-123"
    params["nonce"] = "n2"
    assert client.get("/webhooks/wechat", params=params).status_code == 403


def test_wechat_message_is_acknowledged_with_success(client, state):
    xml = (
        "<xml><ToUserName>gh_official</ToUserName><FromUserName>openid-1</FromUserName>"
        "<CreateTime>1700000000</CreateTime><MsgType>text</MsgType>"
        "<Content>你好</Content><MsgId>42</MsgId></xml>"
    ).encode()
    params = {
        "signature": wechat_signature(WECHAT_TOKEN, "1700000000", "n1"),
        "timestamp": "1700000000",
        "nonce": "n1",
    }
    resp = client.post("/webhooks/wechat", params=params, content=xml)
    assert resp.status_code == 200
    assert resp.text == "success"
    assert state.inbound.execute.await_args.args[0].text == "你好"


def test_wechat_invalid_xml_is_400(client):
    params = {
        "signature": wechat_signature(WECHAT_TOKEN, "1", "n"),
        "timestamp": "1",
        "nonce": "n",
    }
    assert client.post("/webhooks/wechat", params=params, content=b"<xml>").status_code == 400
