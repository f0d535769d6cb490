"""
KakaoTalk adapter (Kakao i Open Builder skill server).

Each skill request carries exactly one user utterance. Kakao exposes no
profile API to skill servers, so profiles are always empty.
"""

from __future__ import annotations

import hmac
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from app.adapters.base import (
    BasePlatformAdapter,
    as_bytes,
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
    TemplateAction,
    TemplateActionType,
    TemplateType,
    UnifiedInboundMessage,
    UnifiedOutboundMessage,
)

logger = logging.getLogger(__name__)

BIZ_MESSAGE_URL = "https://bizmessage.kakao.com/v2/messages/send"
SKILL_VERSION = "2.0"

MAX_SIMPLE_TEXT = 1000
MAX_CARD_TITLE = 50
MAX_CARD_DESCRIPTION = 230
MAX_BUTTONS = 3
MAX_LABEL = 14
MAX_QUICK_REPLIES = 10
DEFAULT_TEXT = "메시지를 확인해주세요."


class KakaoAdapter(BasePlatformAdapter):
    """Kakao adapter: parse skill requests, build skill templates, deliver replies."""

    channel_type = Channel.KAKAO
    SIGNATURE_HEADER = "x-kakao-signature"

    def validate_signature(
        self, raw_body: bytes | str, signature: str, secret: str
    ) -> bool:
        """The header may carry the REST API key itself or an HMAC-SHA256 (base64)."""
        if not signature or not secret:
            return False
        if hmac.compare_digest(signature, secret):
            return True
        expected = hmac_sha256_base64(secret, as_bytes(raw_body))
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, raw_payload: dict[str, Any]) -> list[UnifiedInboundMessage]:
        user_request = raw_payload.get("userRequest") or {}
        user = user_request.get("user") or {}
        properties = user.get("properties") or {}
        user_id = properties.get("plusfriendUserKey") or user.get("id")
        if not user_id:
            return []

        action = raw_payload.get("action") or {}
        params = action.get("params") or {}
        utterance = user_request.get("utterance")

        content_type = ContentType.TEXT
        text: Optional[str] = utterance
        media_url = None
        location = None
        if params.get("image"):
            content_type, media_url, text = ContentType.IMAGE, params["image"], None
        if params.get("file"):
            content_type, media_url, text = ContentType.FILE, params["file"], None
        if params.get("location"):
            location = self._parse_location(action.get("detailParams") or {})
            if location is not None:
                content_type, media_url, text = ContentType.LOCATION, None, None

        if content_type == ContentType.TEXT and text is None:
            return []

        bot = raw_payload.get("bot") or {}
        return [
            UnifiedInboundMessage(
                channel_type=Channel.KAKAO,
                channel_account_id=bot.get("id") or "default",
                channel_user_id=str(user_id),
                message_id=f"kakao_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
                content_type=content_type,
                text=text,
                media_url=media_url,
                location=location,
                timestamp=datetime.now(timezone.utc),
                raw_payload=raw_payload,
            )
        ]

    @staticmethod
    def _parse_location(detail_params: dict[str, Any]) -> Optional[Location]:
        value = (detail_params.get("location") or {}).get("value")
        if not value:
            return None
        try:
            data = json.loads(value)
            latitude = data.get("lat", data.get("latitude"))
            longitude = data.get("lng", data.get("longitude"))
            if latitude is None or longitude is None:
                return None
            return Location(
                latitude=float(latitude),
                longitude=float(longitude),
                address=data.get("address"),
            )
        except (ValueError, TypeError, AttributeError):
            logger.info("Kakao location param could not be parsed")
            return None

    @staticmethod
    def _button(action: TemplateAction) -> dict[str, Any]:
        label = truncate(action.label, MAX_LABEL)
        if action.type == TemplateActionType.URI:
            return {"label": label, "action": "webLink", "webLinkUrl": action.uri}
        if action.type == TemplateActionType.POSTBACK:
            return {
                "label": label,
                "action": "message",
                "messageText": action.text or action.data or action.label,
            }
        return {"label": label, "action": "message", "messageText": action.text or action.label}

    def _template_output(self, template: MessageTemplate) -> dict[str, Any]:
        thumbnail = (
            {"imageUrl": template.thumbnail_url} if template.thumbnail_url else None
        )
        if template.type == TemplateType.BUTTONS:
            card: dict[str, Any] = {
                "title": truncate(template.title, MAX_CARD_TITLE),
                "description": truncate(template.text, MAX_CARD_DESCRIPTION),
                "buttons": [self._button(a) for a in template.actions[:MAX_BUTTONS]],
            }
            if thumbnail:
                card["thumbnail"] = thumbnail
            return {"basicCard": card}
        if template.type == TemplateType.CAROUSEL:
            return {
                "carousel": {
                    "type": "basicCard",
                    "items": [
                        {
                            "title": truncate(template.title or "", MAX_CARD_TITLE),
                            "description": truncate(template.text, MAX_CARD_DESCRIPTION),
                            "thumbnail": thumbnail or {"imageUrl": ""},
                            "buttons": [self._button(a) for a in template.actions[:3]],
                        }
                    ],
                }
            }
        if template.type == TemplateType.CONFIRM:
            return {
                "basicCard": {
                    "description": truncate(template.text, MAX_CARD_DESCRIPTION),
                    "buttons": [self._button(a) for a in template.actions[:2]],
                }
            }
        if template.type == TemplateType.IMAGE and template.thumbnail_url:
            return {
                "simpleImage": {
                    "imageUrl": template.thumbnail_url,
                    "altText": template.title or "이미지",
                }
            }
        return {"simpleText": {"text": truncate(template.text or "", MAX_SIMPLE_TEXT)}}

    def build_template(self, outbound: UnifiedOutboundMessage) -> dict[str, Any]:
        """Skill `template` object (outputs + quickReplies) for an outbound message."""
        outputs: list[dict[str, Any]] = []
        if outbound.content_type == ContentType.TEXT and outbound.text:
            outputs.append({"simpleText": {"text": truncate(outbound.text, MAX_SIMPLE_TEXT)}})
        elif outbound.content_type == ContentType.IMAGE:
            outputs.append(
                {"simpleImage": {"imageUrl": outbound.media_url, "altText": "이미지"}}
            )
        elif outbound.media_url:
            outputs.append({"simpleText": {"text": outbound.media_url}})
        if outbound.template is not None:
            outputs.append(self._template_output(outbound.template))
        if not outputs:
            outputs.append({"simpleText": {"text": DEFAULT_TEXT}})

        template: dict[str, Any] = {"outputs": outputs}
        if outbound.quick_replies:
            template["quickReplies"] = [
                {
                    "label": truncate(reply.label, MAX_LABEL),
                    "action": "message",
                    # Skill quick replies cannot open links; send the value as text.
                    "messageText": reply.value
                    if reply.action == QuickReplyAction.MESSAGE
                    else reply.label,
                }
                for reply in outbound.quick_replies[:MAX_QUICK_REPLIES]
            ]
        return template

    def create_skill_response(self, outbound: UnifiedOutboundMessage) -> dict[str, Any]:
        """Synchronous skill response body returned from the webhook itself."""
        return {"version": SKILL_VERSION, "template": self.build_template(outbound)}

    @staticmethod
    def simple_text_response(text: str) -> dict[str, Any]:
        return {
            "version": SKILL_VERSION,
            "template": {"outputs": [{"simpleText": {"text": text}}]},
        }

    async def _deliver(
        self, account_id: str, outbound: UnifiedOutboundMessage
    ) -> SendResult:
        credentials = await self._resolve_credentials(account_id)
        client = self._get_client()

        if credentials.callback_url:
            response = await client.post(
                credentials.callback_url,
                json=self.create_skill_response(outbound),
            )
            if response.is_error:
                return SendResult(
                    success=False,
                    error=f"Kakao callback error: {response.status_code} - {response.text}",
                )
            return SendResult(
                success=True, message_id=f"kakao_callback_{int(time.time() * 1000)}"
            )

        if credentials.sender_key and credentials.template_code:
            response = await client.post(
                BIZ_MESSAGE_URL,
                json={
                    "senderKey": credentials.sender_key,
                    "templateCode": credentials.template_code,
                    "recipientNo": outbound.channel_user_id,
                    "message": outbound.text or outbound.media_url or "",
                },
                headers={"Authorization": f"Bearer {credentials.api_key}"},
            )
            if response.is_error:
                return SendResult(
                    success=False,
                    error=f"Kakao Channel API error: {response.status_code} - {response.text}",
                )
            data = response.json()
            return SendResult(
                success=True,
                message_id=data.get("msgId") or f"kakao_channel_{int(time.time() * 1000)}",
            )

        # Without a callback or biz-message channel the reply can only travel
        # in a skill response.
        return SendResult(success=True, message_id=f"kakao_{int(time.time() * 1000)}")
