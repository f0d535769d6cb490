"""Tests for WhatsAppAdapter."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.adapters.whatsapp import WhatsAppAdapter, is_within_service_window, media_id_from_url
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
from conftest import mock_client


def wa_payload(messages=None, statuses=None):
    value = {
        "messaging_product": "whatsapp",
        "metadata": {"display_phone_number": "15550001111", "phone_number_id": "PN-1"},
        "contacts": [{"wa_id": "8210", "profile": {"name": "Lee"}}],
    }
    if messages is not None:
        value["messages"] = messages
    if statuses is not None:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA", "changes": [{"field": "messages", "value": value}]}],
    }


@pytest.fixture
def adapter(credentials):
    return WhatsAppAdapter(credentials)


def test_parse_text_with_contact_name(adapter):
    payload = wa_payload(
        [{"from": "8210", "id": "wamid.1", "timestamp": "1700000000", "type": "text", "text": {"body": "안녕하세요"}}]
    )
    (msg,) = adapter.parse_webhook(payload)
    assert msg.channel_account_id == "PN-1"
    assert msg.channel_user_id == "8210"
    assert msg.channel_username == "Lee"
    assert msg.text == "안녕하세요"
    assert msg.timestamp == datetime.fromtimestamp(1700000000, tz=timezone.utc)


def test_parse_media_and_interactive(adapter):
    payload = wa_payload(
        [
            {
                "from": "8210",
                "id": "wamid.2",
                "timestamp": "1700000001",
                "type": "image",
                "image": {"id": "MEDIA-9", "mime_type": "image/jpeg", "caption": "사진"},
            },
            {
                "from": "8210",
                "id": "wamid.3",
                "timestamp": "1700000002",
                "type": "interactive",
                "interactive": {"type": "button_reply", "button_reply": {"id": "BOOK", "title": "예약"}},
            },
            {"from": "8210", "id": "wamid.4", "timestamp": "1", "type": "reaction", "reaction": {}},
        ]
    )
    image, reply = adapter.parse_webhook(payload)
    assert image.content_type == ContentType.IMAGE
    assert image.media_url == "whatsapp://media/MEDIA-9"
    assert media_id_from_url(image.media_url) == "MEDIA-9"
    assert image.text == "사진"
    assert reply.content_type == ContentType.TEXT
    assert reply.text == "BOOK"


def test_status_only_payload_yields_nothing(adapter):
    payload = wa_payload(statuses=[{"id": "wamid.1", "status": "delivered"}])
    assert adapter.parse_webhook(payload) == []


def test_quick_replies_become_reply_buttons(adapter):
    outbound = UnifiedOutboundMessage(
        channel_type=Channel.WHATSAPP,
        channel_user_id="8210",
        text="예약하시겠어요?",
        quick_replies=[
            QuickReply(label="네, 바로 예약하고 싶습니다 지금", value="yes"),
            QuickReply(label="아니요", value="no"),
        ],
    )
    payload = adapter.build_payload(outbound)
    assert payload["type"] == "interactive"
    buttons = payload["interactive"]["action"]["buttons"]
    assert [b["reply"]["id"] for b in buttons] == ["yes", "no"]
    assert all(len(b["reply"]["title"]) <= 20 for b in buttons)


def test_carousel_becomes_list(adapter):
    outbound = UnifiedOutboundMessage(
        channel_type=Channel.WHATSAPP,
        channel_user_id="8210",
        template=MessageTemplate(
            type=TemplateType.CAROUSEL,
            title="시술 목록",
            actions=[
                TemplateAction(type=TemplateActionType.POSTBACK, label=f"시술 {i}", data=f"T{i}")
                for i in range(12)
            ],
        ),
    )
    payload = adapter.build_payload(outbound)
    assert payload["interactive"]["type"] == "list"
    rows = payload["interactive"]["action"]["sections"][0]["rows"]
    assert len(rows) == 10
    assert rows[0] == {"id": "T0", "title": "시술 0"}


@pytest.mark.asyncio
async def test_text_and_template_send_two_requests(credentials):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"messages": [{"id": f"wamid.out{len(requests)}"}]})

    adapter = WhatsAppAdapter(credentials, http_client=mock_client(handler))
    outbound = UnifiedOutboundMessage(
        channel_type=Channel.WHATSAPP,
        channel_user_id="8210",
        text="안내드립니다",
        template=MessageTemplate(type=TemplateType.CONFIRM, text="진행할까요?"),
    )
    result = await adapter.send_message("PN-1", outbound)
    assert result.success is True
    assert result.message_id == "wamid.out2"
    assert [r.url.path for r in requests] == ["/v18.0/PN-1/messages"] * 2
    assert requests[0].headers["Authorization"] == "Bearer wa-token"
    assert json.loads(requests[0].content)["text"]["body"] == "안내드립니다"
    assert json.loads(requests[1].content)["type"] == "interactive"


@pytest.mark.asyncio
async def test_download_media(credentials):
    def handler(request):
        if request.url.path.endswith("/MEDIA-9"):
            return httpx.Response(200, json={"url": "https://lookaside.example/media"})
        return httpx.Response(200, content=b"jpeg-bytes")

    adapter = WhatsAppAdapter(credentials, http_client=mock_client(handler))
    assert await adapter.get_media_url("PN-1", "MEDIA-9") == "https://lookaside.example/media"
    assert await adapter.download_media("PN-1", "MEDIA-9") == b"jpeg-bytes"


def test_service_window():
    now = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    assert is_within_service_window(now - timedelta(hours=23), now) is True
    assert is_within_service_window(now - timedelta(hours=24), now) is False


@pytest.mark.asyncio
async def test_template_message_and_mark_as_read(credentials):
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"messages": [{"id": "wamid.tpl"}], "success": True})

    adapter = WhatsAppAdapter(credentials, http_client=mock_client(handler))
    result = await adapter.send_template_message("PN-1", "8210", "appointment_reminder", "ko")
    assert result.success is True
    assert result.message_id == "wamid.tpl"
    assert bodies[0]["template"] == {"name": "appointment_reminder", "language": {"code": "ko"}}

    assert await adapter.mark_as_read("PN-1", "wamid.1") is True
    assert bodies[1] == {"messaging_product": "whatsapp", "status": "read", "message_id": "wamid.1"}
