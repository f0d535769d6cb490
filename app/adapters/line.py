"""
LINE Messaging API adapter.

Webhooks carry a `destination` (the bot's user id, used as account id) and
a list of events; only `message` events from a user source are actionable.
Replies are pushed with the channel access token.
"""

from __future__ import annotations

import hmac
import logging
import time
from typing import Any, Optional

from app.adapters.base import (
    BasePlatformAdapter,
    as_bytes,
    from_epoch_millis,
    hmac_sha256_base64,
    truncate,
)
from app.schemas.messages import (
    Channel,
    ContentType,
    Location,
    MessageTemplate,
    QuickReplyAction,
    SendResult,
    Sticker,
    TemplateActionType,
    TemplateType,
    UnifiedInboundMessage,
    UnifiedOutboundMessage,
    UserProfile,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.line.me/v2/bot"
DATA_API_BASE = "https://api-data.line.me/v2/bot"

MAX_QUICK_REPLIES = 13
MAX_LABEL = 20
MAX_TITLE = 40
MAX_BUTTONS_TEXT = 160
MAX_CAROUSEL_TEXT = 120
MAX_CONFIRM_TEXT = 240
MAX_ALT_TEXT = 400
MAX_TEXT = 5000

_CONTENT_TYPES = {
    "text": ContentType.TEXT,
    "image": ContentType.IMAGE,
    "video": ContentType.VIDEO,
    "audio": ContentType.AUDIO,
    "file": ContentType.FILE,
    "location": ContentType.LOCATION,
    "sticker": ContentType.STICKER,
}


class LineAdapter(BasePlatformAdapter):
    """LINE adapter: parse webhook events, push messages, fetch profiles and content."""

    channel_type = Channel.LINE
    SIGNATURE_HEADER = "x-line-signature"

    def validate_signature(
        self, raw_body: bytes | str, signature: str, secret: str
    ) -> bool:
        """base64(HMAC-SHA256(channel secret, body)) must equal the header value."""
        if not signature or not secret:
            return False
        expected = hmac_sha256_base64(secret, as_bytes(raw_body))
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, raw_payload: dict[str, Any]) -> list[UnifiedInboundMessage]:
        account_id = raw_payload.get("destination") or ""
        messages: list[UnifiedInboundMessage] = []
        for event in raw_payload.get("events") or []:
            parsed = self._parse_event(account_id, event)
            if parsed is not None:
                messages.append(parsed)
        return messages

    def _parse_event(
        self, account_id: str, event: dict[str, Any]
    ) -> Optional[UnifiedInboundMessage]:
        user_id = (event.get("source") or {}).get("userId")
        message = event.get("message")
        if event.get("type") != "message" or not user_id or not message:
            return None
        content_type = _CONTENT_TYPES.get(message.get("type"))
        if content_type is None:
            return None

        text = None
        media_url = None
        location = None
        sticker = None
        if content_type == ContentType.TEXT:
            text = message.get("text") or ""
        elif content_type in (ContentType.IMAGE, ContentType.VIDEO):
            provider = message.get("contentProvider") or {}
            if provider.get("type") == "external":
                media_url = provider.get("originalContentUrl")
        elif content_type == ContentType.LOCATION:
            coords = message.get("location") or message
            if coords.get("latitude") is None or coords.get("longitude") is None:
                return None
            location = Location(
                latitude=coords["latitude"],
                longitude=coords["longitude"],
                address=coords.get("address") or coords.get("title"),
            )
        elif content_type == ContentType.STICKER:
            if not message.get("stickerId"):
                return None
            sticker = Sticker(
                package_id=message.get("packageId"),
                sticker_id=str(message["stickerId"]),
            )

        return UnifiedInboundMessage(
            channel_type=Channel.LINE,
            channel_account_id=account_id,
            channel_user_id=user_id,
            message_id=str(message.get("id", "")),
            content_type=content_type,
            text=text,
            media_url=media_url,
            media_type=message.get("type") if media_url else None,
            location=location,
            sticker=sticker,
            timestamp=from_epoch_millis(event.get("timestamp")),
            raw_payload=event,
        )

    def build_messages(self, outbound: UnifiedOutboundMessage) -> list[dict[str, Any]]:
        """LINE message objects for one outbound message; quick replies go on the last."""
        messages: list[dict[str, Any]] = []
        if outbound.content_type == ContentType.IMAGE:
            messages.append(
                {
                    "type": "image",
                    "originalContentUrl": outbound.media_url,
                    "previewImageUrl": outbound.media_url,
                }
            )
        elif outbound.content_type == ContentType.VIDEO:
            messages.append(
                {
                    "type": "video",
                    "originalContentUrl": outbound.media_url,
                    "previewImageUrl": outbound.media_url,
                }
            )
        elif outbound.content_type in (ContentType.AUDIO, ContentType.FILE):
            # LINE cannot push arbitrary files; send the link instead.
            messages.append({"type": "text", "text": outbound.media_url})
        else:
            if outbound.text:
                messages.append({"type": "text", "text": outbound.text[:MAX_TEXT]})
            if outbound.template is not None:
                messages.append(self._template_message(outbound.template))

        if outbound.quick_replies and messages:
            messages[-1]["quickReply"] = {
                "items": [
                    {
                        "type": "action",
                        "action": (
                            {
                                "type": "uri",
                                "label": truncate(reply.label, MAX_LABEL),
                                "uri": reply.value,
                            }
                            if reply.action == QuickReplyAction.URL
                            else {
                                "type": "message",
                                "label": truncate(reply.label, MAX_LABEL),
                                "text": reply.value,
                            }
                        ),
                    }
                    for reply in outbound.quick_replies[:MAX_QUICK_REPLIES]
                ]
            }
        return messages

    @staticmethod
    def _action(action: Any) -> dict[str, Any]:
        label = truncate(action.label, MAX_LABEL)
        if action.type == TemplateActionType.URI:
            return {"type": "uri", "label": label, "uri": action.uri}
        if action.type == TemplateActionType.POSTBACK:
            out = {"type": "postback", "label": label, "data": action.data or ""}
            if action.text:
                out["displayText"] = action.text
            return out
        return {"type": "message", "label": label, "text": action.text or action.label}

    def _template_message(self, template: MessageTemplate) -> dict[str, Any]:
        if template.type == TemplateType.IMAGE and template.thumbnail_url:
            return {
                "type": "image",
                "originalContentUrl": template.thumbnail_url,
                "previewImageUrl": template.thumbnail_url,
            }
        if template.type == TemplateType.CONFIRM:
            return {
                "type": "template",
                "altText": truncate(template.text or "확인", MAX_ALT_TEXT),
                "template": {
                    "type": "confirm",
                    "text": truncate(template.text or "", MAX_CONFIRM_TEXT),
                    "actions": [
                        {
                            "type": "message",
                            "label": truncate(a.label, MAX_LABEL),
                            "text": a.text or a.label,
                        }
                        for a in template.actions[:2]
                    ],
                },
            }
        if template.type == TemplateType.CAROUSEL:
            column: dict[str, Any] = {
                "text": truncate(template.text or "", MAX_CAROUSEL_TEXT),
                "actions": [self._action(a) for a in template.actions[:3]],
            }
            if template.title:
                column["title"] = truncate(template.title, MAX_TITLE)
            if template.thumbnail_url:
                column["thumbnailImageUrl"] = template.thumbnail_url
            return {
                "type": "template",
                "altText": truncate(template.title or "캐러셀", MAX_ALT_TEXT),
                "template": {"type": "carousel", "columns": [column]},
            }
        if template.type == TemplateType.BUTTONS:
            body: dict[str, Any] = {
                "type": "buttons",
                "text": truncate(template.text or "", MAX_BUTTONS_TEXT),
                "actions": [self._action(a) for a in template.actions[:4]],
            }
            if template.title:
                body["title"] = truncate(template.title, MAX_TITLE)
            if template.thumbnail_url:
                body["thumbnailImageUrl"] = template.thumbnail_url
            return {
                "type": "template",
                "altText": truncate(template.title or "메시지", MAX_ALT_TEXT),
                "template": body,
            }
        return {"type": "text", "text": template.text or ""}

    async def _deliver(
        self, account_id: str, outbound: UnifiedOutboundMessage
    ) -> SendResult:
        credentials = await self._resolve_credentials(account_id)
        response = await self._get_client().post(
            f"{API_BASE}/message/push",
            json={
                "to": outbound.channel_user_id,
                "messages": self.build_messages(outbound),
            },
            headers={"Authorization": f"Bearer {credentials.access_token}"},
        )
        if response.is_error:
            return SendResult(
                success=False,
                error=f"LINE API error: {response.status_code} - {response.text}",
            )
        # Push responses carry no message id.
        return SendResult(success=True, message_id=f"line_{int(time.time() * 1000)}")

    async def get_user_profile(self, account_id: str, user_id: str) -> UserProfile:
        credentials = await self._resolve_credentials(account_id)
        response = await self._get_client().get(
            f"{API_BASE}/profile/{user_id}",
            headers={"Authorization": f"Bearer {credentials.access_token}"},
        )
        if response.is_error:
            logger.info("LINE profile lookup failed: %s", response.status_code)
            return UserProfile()
        data = response.json()
        return UserProfile(
            display_name=data.get("displayName"),
            picture_url=data.get("pictureUrl"),
            status_message=data.get("statusMessage"),
        )

    async def get_message_content(
        self, account_id: str, message_id: str
    ) -> Optional[bytes]:
        """Download the binary content of an image/video/audio/file message."""
        credentials = await self._resolve_credentials(account_id)
        response = await self._get_client().get(
            f"{DATA_API_BASE}/message/{message_id}/content",
            headers={"Authorization": f"Bearer {credentials.access_token}"},
        )
        if response.is_error:
            return None
        return response.content
