"""Tests for LineAdapter."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from app.adapters.line import MAX_QUICK_REPLIES, LineAdapter
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
from conftest import LINE_SECRET, flip_byte, line_signature, mock_client


def line_event(message, **overrides):
    event = {
        "type": "message",
        "timestamp": 1700000000000,
        "source": {"type": "user", "userId": "U-customer"},
        "replyToken": "reply-token",
        "message": message,
    }
    event.update(overrides)
    return event


def line_body(*events):
    return {"destination": "U-bot", "events": list(events)}


@pytest.fixture
def adapter(credentials):
    return LineAdapter(credentials)


def test_parse_text_message(adapter):
    body = line_body(line_event({"id": "m1", "type": "text", "text": "예약하고 싶어요"}))
    messages = adapter.parse_webhook(body)
    assert len(messages) == 1
    msg = messages[0]
    assert msg.channel_type == Channel.LINE
    assert msg.channel_account_id == "U-bot"
    assert msg.channel_user_id == "U-customer"
    assert msg.message_id == "m1"
    assert msg.content_type == ContentType.TEXT
    assert msg.text == "예약하고 싶어요"
    assert msg.timestamp == datetime.fromtimestamp(1700000000, tz=timezone.utc)


def test_parse_location_and_sticker(adapter):
    body = line_body(
        line_event(
            {
                "id": "m2",
                "type": "location",
                "latitude": 37.5,
                "longitude": 127.0,
                "address": "Seoul",
            }
        ),
        line_event({"id": "m3", "type": "sticker", "packageId": "1", "stickerId": "2"}),
    )
    location, sticker = adapter.parse_webhook(body)
    assert location.content_type == ContentType.LOCATION
    assert location.location.latitude == 37.5
    assert location.location.address == "Seoul"
    assert sticker.content_type == ContentType.STICKER
    assert sticker.sticker.sticker_id == "2"


def test_parse_skips_non_message_events(adapter):
    body = line_body(
        {"type": "follow", "timestamp": 1, "source": {"userId": "U1"}},
        {"type": "unsend", "timestamp": 1, "source": {"userId": "U1"}},
        line_event({"id": "m4", "type": "unknown"}),
        line_event({"id": "m5", "type": "text", "text": "hi"}, source={"type": "group"}),
    )
    assert adapter.parse_webhook(body) == []


def test_parse_empty_payload(adapter):
    assert adapter.parse_webhook({}) == []


def test_validate_signature(adapter):
    body = json.dumps(line_body(line_event({"id": "m1", "type": "text", "text": "hi"}))).encode()
    signature = line_signature(body)
    assert adapter.validate_signature(body, signature, LINE_SECRET) is True
    for index in (0, len(body) // 2, len(body) - 1):
        assert adapter.validate_signature(flip_byte(body, index), signature, LINE_SECRET) is False
    assert adapter.validate_signature(body, signature, "other-secret") is False
    assert adapter.validate_signature(body, "", LINE_SECRET) is False


def test_build_messages_caps_quick_replies(adapter):
    outbound = UnifiedOutboundMessage(
        channel_type=Channel.LINE,
        channel_user_id="U-customer",
        text="어떤 시술이 궁금하세요?",
        quick_replies=[
            QuickReply(label=f"시술 옵션 번호 {i} 상세 안내 보기", value=f"opt{i}")
            for i in range(15)
        ],
    )
    messages = adapter.build_messages(outbound)
    assert len(messages) == 1
    items = messages[0]["quickReply"]["items"]
    assert len(items) == MAX_QUICK_REPLIES
    assert all(len(item["action"]["label"]) <= 20 for item in items)


def test_build_messages_text_and_confirm_template(adapter):
    outbound = UnifiedOutboundMessage(
        channel_type=Channel.LINE,
        channel_user_id="U-customer",
        text="예약을 확정할까요?",
        template=MessageTemplate(
            type=TemplateType.CONFIRM,
            text="내일 오후 3시",
            actions=[
                TemplateAction(type=TemplateActionType.MESSAGE, label="예"),
                TemplateAction(type=TemplateActionType.MESSAGE, label="아니오"),
                TemplateAction(type=TemplateActionType.MESSAGE, label="나중에"),
            ],
        ),
    )
    text_message, template_message = adapter.build_messages(outbound)
    assert text_message == {"type": "text", "text": "예약을 확정할까요?"}
    assert template_message["template"]["type"] == "confirm"
    assert len(template_message["template"]["actions"]) == 2


@pytest.mark.asyncio
async def test_send_message_pushes_with_access_token(credentials):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={})

    adapter = LineAdapter(credentials, http_client=mock_client(handler))
    result = await adapter.send_message(
        "U-bot",
        UnifiedOutboundMessage(channel_type=Channel.LINE, channel_user_id="U-customer", text="hi"),
    )
    assert result.success is True
    assert requests[0].url.path == "/v2/bot/message/push"
    assert requests[0].headers["Authorization"] == "Bearer line-access-token"
    assert json.loads(requests[0].content)["to"] == "U-customer"


@pytest.mark.asyncio
async def test_send_message_reports_api_error(credentials):
    adapter = LineAdapter(
        credentials,
        http_client=mock_client(lambda request: httpx.Response(400, text="bad request")),
    )
    result = await adapter.send_message(
        "U-bot",
        UnifiedOutboundMessage(channel_type=Channel.LINE, channel_user_id="U1", text="hi"),
    )
    assert result.success is False
    assert "400" in result.error
    assert result.retryable is False


@pytest.mark.asyncio
async def test_send_message_network_error_is_retryable(credentials):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    adapter = LineAdapter(credentials, http_client=mock_client(handler))
    result = await adapter.send_message(
        "U-bot",
        UnifiedOutboundMessage(channel_type=Channel.LINE, channel_user_id="U1", text="hi"),
    )
    assert result.success is False
    assert result.retryable is True


@pytest.mark.asyncio
async def test_send_message_rejects_other_channel(adapter):
    result = await adapter.send_message(
        "U-bot",
        UnifiedOutboundMessage(channel_type=Channel.KAKAO, channel_user_id="U1", text="hi"),
    )
    assert result.success is False


@pytest.mark.asyncio
async def test_get_user_profile_and_content(credentials):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/content"):
            return httpx.Response(200, content=b"\x89PNG")
        return httpx.Response(
            200, json={"displayName": "Kim", "pictureUrl": "https://p/1.png"}
        )

    adapter = LineAdapter(credentials, http_client=mock_client(handler))
    profile = await adapter.get_user_profile("U-bot", "U-customer")
    assert profile.display_name == "Kim"
    assert profile.picture_url == "https://p/1.png"
    assert await adapter.get_message_content("U-bot", "m1") == b"\x89PNG"
