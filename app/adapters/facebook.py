"""Facebook Messenger adapter (Graph API send API, page webhooks)."""

from __future__ import annotations

import logging
from typing import Any, Optional

from app.adapters.base import from_epoch_millis, truncate
from app.adapters.meta import (
    GRAPH_API_BASE,
    MAX_BUTTON_TEXT,
    MetaGraphAdapter,
    generic_template,
    graph_error,
    media_attachment,
    messenger_button,
    messenger_messages,
)
from app.schemas.messages import (
    Channel,
    ContentType,
    Location,
    MessageTemplate,
    SendResult,
    Sticker,
    TemplateType,
    UnifiedInboundMessage,
    UnifiedOutboundMessage,
    UserProfile,
)

logger = logging.getLogger(__name__)

MAX_QUICK_REPLIES = 13
SUPPORTED_MEDIA = frozenset(
    {ContentType.IMAGE, ContentType.VIDEO, ContentType.AUDIO, ContentType.FILE}
)

_ATTACHMENT_TYPES = {
    "image": ContentType.IMAGE,
    "video": ContentType.VIDEO,
    "audio": ContentType.AUDIO,
    "file": ContentType.FILE,
}


class FacebookAdapter(MetaGraphAdapter):
    """Messenger adapter for Facebook pages."""

    channel_type = Channel.FACEBOOK

    def parse_webhook(self, raw_payload: dict[str, Any]) -> list[UnifiedInboundMessage]:
        if raw_payload.get("object") != "page":
            return []
        messages: list[UnifiedInboundMessage] = []
        for entry in raw_payload.get("entry") or []:
            page_id = str(entry.get("id", ""))
            for event in entry.get("messaging") or []:
                messages.extend(self._parse_event(page_id, event))
        return messages

    def _parse_event(
        self, page_id: str, event: dict[str, Any]
    ) -> list[UnifiedInboundMessage]:
        message = event.get("message")
        postback = event.get("postback")
        sender_id = (event.get("sender") or {}).get("id")
        if not sender_id or (message is None and postback is None):
            return []

        def build(**kwargs: Any) -> UnifiedInboundMessage:
            return UnifiedInboundMessage(
                channel_type=Channel.FACEBOOK,
                channel_account_id=page_id,
                channel_user_id=str(sender_id),
                timestamp=from_epoch_millis(event.get("timestamp")),
                raw_payload=event,
                **kwargs,
            )

        if postback is not None:
            return [
                build(
                    message_id=f"postback_{event.get('timestamp')}",
                    content_type=ContentType.TEXT,
                    text=postback.get("payload") or postback.get("title") or "",
                )
            ]
        if message.get("is_echo"):
            return []

        mid = message.get("mid", "")
        quick_reply = message.get("quick_reply")
        if quick_reply is not None:
            return [
                build(
                    message_id=mid,
                    content_type=ContentType.TEXT,
                    text=quick_reply.get("payload", ""),
                )
            ]

        attachments = message.get("attachments") or []
        if not attachments:
            if message.get("text") is None:
                return []
            return [build(message_id=mid, content_type=ContentType.TEXT, text=message["text"])]

        parsed = []
        for index, attachment in enumerate(attachments):
            fields = self._attachment_fields(attachment)
            if fields is not None:
                parsed.append(build(message_id=f"{mid}_{index}", **fields))
        return parsed

    @staticmethod
    def _attachment_fields(attachment: dict[str, Any]) -> Optional[dict[str, Any]]:
        kind = attachment.get("type")
        payload = attachment.get("payload") or {}
        if kind == "image" and payload.get("sticker_id"):
            return {
                "content_type": ContentType.STICKER,
                "sticker": Sticker(
                    package_id="facebook", sticker_id=str(payload["sticker_id"])
                ),
            }
        if kind in _ATTACHMENT_TYPES:
            return {
                "content_type": _ATTACHMENT_TYPES[kind],
                "media_url": payload.get("url"),
                "media_type": kind,
            }
        if kind == "location":
            coordinates = payload.get("coordinates") or {}
            if coordinates.get("lat") is None or coordinates.get("long") is None:
                return None
            return {
                "content_type": ContentType.LOCATION,
                "location": Location(
                    latitude=coordinates["lat"], longitude=coordinates["long"]
                ),
            }
        # "fallback" (shared links) and unknown kinds carry nothing actionable.
        return None

    def template_attachment(self, template: MessageTemplate) -> Optional[dict[str, Any]]:
        if template.type == TemplateType.BUTTONS:
            return {
                "type": "template",
                "payload": {
                    "template_type": "button",
                    "text": truncate(template.text or template.title or "", MAX_BUTTON_TEXT),
                    "buttons": [messenger_button(a) for a in template.actions[:3]],
                },
            }
        if template.type == TemplateType.CAROUSEL:
            return generic_template(template)
        if template.type == TemplateType.CONFIRM:
            return {
                "type": "template",
                "payload": {
                    "template_type": "button",
                    "text": truncate(template.text or "", MAX_BUTTON_TEXT),
                    "buttons": [
                        {
                            "type": "postback",
                            "title": truncate(a.label, 20),
                            "payload": a.data or a.text or a.label,
                        }
                        for a in template.actions[:2]
                    ],
                },
            }
        if template.type == TemplateType.IMAGE and template.thumbnail_url:
            return media_attachment("image", template.thumbnail_url)
        return None

    def build_messages(self, outbound: UnifiedOutboundMessage) -> list[dict[str, Any]]:
        return messenger_messages(
            outbound, self.template_attachment, MAX_QUICK_REPLIES, SUPPORTED_MEDIA
        )

    async def _deliver(
        self, account_id: str, outbound: UnifiedOutboundMessage
    ) -> SendResult:
        credentials = await self._resolve_credentials(account_id)
        client = self._get_client()
        message_id = None
        for message in self.build_messages(outbound):
            response = await client.post(
                f"{GRAPH_API_BASE}/me/messages",
                params={"access_token": credentials.page_access_token},
                json={
                    "recipient": {"id": outbound.channel_user_id},
                    "message": message,
                    "messaging_type": "RESPONSE",
                },
            )
            if response.is_error:
                return SendResult(success=False, error=graph_error(response, "Facebook"))
            message_id = response.json().get("message_id")
        return SendResult(success=True, message_id=message_id)

    async def get_user_profile(self, account_id: str, user_id: str) -> UserProfile:
        credentials = await self._resolve_credentials(account_id)
        response = await self._get_client().get(
            f"{GRAPH_API_BASE}/{user_id}",
            params={
                "fields": "first_name,last_name,profile_pic",
                "access_token": credentials.page_access_token,
            },
        )
        if response.is_error:
            logger.info("Facebook profile lookup failed: %s", response.status_code)
            return UserProfile()
        data = response.json()
        name = " ".join(
            part for part in (data.get("first_name"), data.get("last_name")) if part
        )
        return UserProfile(display_name=name or None, picture_url=data.get("profile_pic"))
