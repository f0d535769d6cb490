"""Tests for KakaoAdapter."""

import json

import httpx
import pytest

from app.adapters.kakao import BIZ_MESSAGE_URL, MAX_BUTTONS, MAX_QUICK_REPLIES, KakaoAdapter
from app.core.credentials import CredentialResolver, InMemoryCredentialStore
from app.schemas.messages import (
    Channel,
    ContentType,
    MessageTemplate,
    QuickReply,
    TemplateAction,
    TemplateActionType,
    TemplateType,
    UnifiedOutboundMessage,
)
from conftest import KAKAO_KEY, flip_byte, line_signature, make_settings, mock_client


def skill_request(utterance="영업시간 알려주세요", params=None, detail_params=None, **user):
    return {
        "bot": {"id": "bot-1", "name": "clinic"},
        "userRequest": {
            "utterance": utterance,
            "user": {
                "id": user.get("user_id", "kakao-user"),
                "properties": user.get("properties", {}),
            },
        },
        "action": {"params": params or {}, "detailParams": detail_params or {}},
    }


@pytest.fixture
def adapter(credentials):
    return KakaoAdapter(credentials)


def test_parse_text_utterance(adapter):
    (msg,) = adapter.parse_webhook(skill_request())
    assert msg.channel_type == Channel.KAKAO
    assert msg.channel_account_id == "bot-1"
    assert msg.channel_user_id == "kakao-user"
    assert msg.content_type == ContentType.TEXT
    assert msg.text == "영업시간 알려주세요"
    assert msg.message_id.startswith("kakao_")


def test_parse_prefers_plusfriend_user_key(adapter):
    payload = skill_request(properties={"plusfriendUserKey": "pf-key"})
    (msg,) = adapter.parse_webhook(payload)
    assert msg.channel_user_id == "pf-key"


def test_parse_image_and_location(adapter):
    (image,) = adapter.parse_webhook(
        skill_request(params={"image": "https://kakao.example/img.jpg"})
    )
    assert image.content_type == ContentType.IMAGE
    assert image.media_url == "https://kakao.example/img.jpg"
    assert image.text is None

    (location,) = adapter.parse_webhook(
        skill_request(
            params={"location": "here"},
            detail_params={
                "location": {"value": json.dumps({"lat": 37.56, "lng": 126.97, "address": "서울"})}
            },
        )
    )
    assert location.content_type == ContentType.LOCATION
    assert location.location.latitude == 37.56
    assert location.location.address == "서울"


def test_parse_without_user_returns_nothing(adapter):
    payload = skill_request()
    payload["userRequest"]["user"] = {}
    assert adapter.parse_webhook(payload) == []


def test_parse_defaults_account_id(adapter):
    payload = skill_request()
    del payload["bot"]
    (msg,) = adapter.parse_webhook(payload)
    assert msg.channel_account_id == "default"


def test_validate_signature_accepts_key_or_hmac(adapter):
    body = json.dumps(skill_request()).encode()
    assert adapter.validate_signature(body, KAKAO_KEY, KAKAO_KEY) is True
    signature = line_signature(body, KAKAO_KEY)
    assert adapter.validate_signature(body, signature, KAKAO_KEY) is True
    assert adapter.validate_signature(flip_byte(body, 5), signature, KAKAO_KEY) is False
    assert adapter.validate_signature(body, "wrong", KAKAO_KEY) is False


def test_skill_response_limits(adapter):
    outbound = UnifiedOutboundMessage(
        channel_type=Channel.KAKAO,
        channel_user_id="kakao-user",
        text="원하시는 항목을 선택해주세요",
        template=MessageTemplate(
            type=TemplateType.BUTTONS,
            title="시술 안내",
            text="인기 시술",
            actions=[
                TemplateAction(type=TemplateActionType.MESSAGE, label=f"아주 긴 버튼 라벨 번호 {i}")
                for i in range(5)
            ],
        ),
        quick_replies=[QuickReply(label=f"옵션{i}", value=f"v{i}") for i in range(12)],
    )
    response = adapter.create_skill_response(outbound)
    assert response["version"] == "2.0"
    outputs = response["template"]["outputs"]
    assert outputs[0] == {"simpleText": {"text": "원하시는 항목을 선택해주세요"}}
    buttons = outputs[1]["basicCard"]["buttons"]
    assert len(buttons) == MAX_BUTTONS
    assert all(len(b["label"]) <= 14 for b in buttons)
    assert len(response["template"]["quickReplies"]) == MAX_QUICK_REPLIES


def test_simple_text_response():
    assert KakaoAdapter.simple_text_response("잠시만요") == {
        "version": "2.0",
        "template": {"outputs": [{"simpleText": {"text": "잠시만요"}}]},
    }


@pytest.mark.asyncio
async def test_send_without_callback_needs_no_http(credentials):
    def handler(request):
        raise AssertionError("no request expected")

    adapter = KakaoAdapter(credentials, http_client=mock_client(handler))
    result = await adapter.send_message(
        "bot-1",
        UnifiedOutboundMessage(channel_type=Channel.KAKAO, channel_user_id="u", text="hi"),
    )
    assert result.success is True


@pytest.mark.asyncio
async def test_send_uses_biz_message_api(settings):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"msgId": "biz-1"})

    resolver = CredentialResolver(
        settings=make_settings(kakao_sender_key="sender", kakao_template_code="tpl")
    )
    adapter = KakaoAdapter(resolver, http_client=mock_client(handler))
    result = await adapter.send_message(
        "bot-1",
        UnifiedOutboundMessage(channel_type=Channel.KAKAO, channel_user_id="010", text="hi"),
    )
    assert result.success is True
    assert result.message_id == "biz-1"
    assert str(requests[0].url) == BIZ_MESSAGE_URL
    body = json.loads(requests[0].content)
    assert body["senderKey"] == "sender"
    assert body["message"] == "hi"


@pytest.mark.asyncio
async def test_send_posts_skill_response_to_stored_callback(settings, fernet_key):
    store = InMemoryCredentialStore()
    store.put(
        Channel.KAKAO,
        "bot-1",
        {"api_key": "stored-key", "callback_url": "https://callback.kakao.example/1"},
    )
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"status": "SUCCESS"})

    adapter = KakaoAdapter(
        CredentialResolver(store=store, settings=settings),
        http_client=mock_client(handler),
    )
    result = await adapter.send_message(
        "bot-1",
        UnifiedOutboundMessage(channel_type=Channel.KAKAO, channel_user_id="u", text="안녕하세요"),
    )
    assert result.success is True
    assert result.message_id.startswith("kakao_callback_")
    assert requests[0].url.host == "callback.kakao.example"
    assert json.loads(requests[0].content)["template"]["outputs"][0]["simpleText"]["text"] == "안녕하세요"
