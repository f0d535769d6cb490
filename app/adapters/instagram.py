"""Instagram Messaging adapter (Graph API, instagram object webhooks)."""

from __future__ import annotations

import logging
from typing import Any, Optional

from app.adapters.base import from_epoch_millis
from app.adapters.meta import (
    GRAPH_API_BASE,
    MetaGraphAdapter,
    generic_template,
    graph_error,
    media_attachment,
    messenger_messages,
)
from app.schemas.messages import (
    Channel,
    ContentType,
    MessageTemplate,
    SendResult,
    TemplateType,
    UnifiedInboundMessage,
    UnifiedOutboundMessage,
    UserProfile,
)

logger = logging.getLogger(__name__)

MAX_QUICK_REPLIES = 13
SUPPORTED_MEDIA = frozenset({ContentType.IMAGE, ContentType.VIDEO, ContentType.AUDIO})

_MEDIA_TYPES = {
    "image": ContentType.IMAGE,
    "video": ContentType.VIDEO,
    "audio": ContentType.AUDIO,
    "file": ContentType.FILE,
}


class InstagramAdapter(MetaGraphAdapter):
    channel_type = Channel.INSTAGRAM

    def parse_webhook(self, raw_payload: dict[str, Any]) -> list[UnifiedInboundMessage]:
        if raw_payload.get("object") != "instagram":
            return []
        messages: list[UnifiedInboundMessage] = []
        for entry in raw_payload.get("entry") or []:
            account_id = str(entry.get("id", ""))
            for event in entry.get("messaging") or []:
                messages.extend(self._parse_event(account_id, event))
        return messages

    def _parse_event(
        self, account_id: str, event: dict[str, Any]
    ) -> list[UnifiedInboundMessage]:
        message = event.get("message")
        postback = event.get("postback")
        sender_id = (event.get("sender") or {}).get("id")
        if message is not None and (
            message.get("is_echo")
            or message.get("is_deleted")
            or message.get("is_unsupported")
        ):
            return []
        if not sender_id or (message is None and postback is None):
            return []

        def build(**kwargs: Any) -> UnifiedInboundMessage:
            return UnifiedInboundMessage(
                channel_type=Channel.INSTAGRAM,
                channel_account_id=account_id,
                channel_user_id=str(sender_id),
                timestamp=from_epoch_millis(event.get("timestamp")),
                raw_payload=event,
                **kwargs,
            )

        if postback is not None:
            return [
                build(
                    message_id=postback.get("mid") or f"postback_{event.get('timestamp')}",
                    content_type=ContentType.TEXT,
                    text=postback.get("payload") or postback.get("title") or "",
                )
            ]

        mid = message.get("mid", "")
        if message.get("quick_reply") is not None:
            return [
                build(
                    message_id=mid,
                    content_type=ContentType.TEXT,
                    text=message["quick_reply"].get("payload", ""),
                )
            ]
        if (message.get("reply_to") or {}).get("story"):
            return [
                build(
                    message_id=mid,
                    content_type=ContentType.TEXT,
                    text=message.get("text") or "[Story Reply]",
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
        url = payload.get("url")
        if kind in _MEDIA_TYPES:
            return {"content_type": _MEDIA_TYPES[kind], "media_url": url, "media_type": kind}
        if kind == "share":
            shared = url or payload.get("reel_video_id") or "Media"
            return {"content_type": ContentType.TEXT, "text": f"[Shared Content: {shared}]"}
        if kind == "story_mention":
            return {
                "content_type": ContentType.TEXT,
                "text": f"[Story Mention: {url or 'Media'}]",
                "media_url": url,
            }
        if kind == "story_reply":
            return {
                "content_type": ContentType.TEXT,
                "text": f"[Story Reply: {url or 'Media'}]",
                "media_url": url,
            }
        return None

    def template_attachment(self, template: MessageTemplate) -> Optional[dict[str, Any]]:
        """Instagram only renders generic templates; buttons and carousels map onto one."""
        if template.type in (TemplateType.BUTTONS, TemplateType.CAROUSEL, TemplateType.CONFIRM):
            return generic_template(template)
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
                f"{GRAPH_API_BASE}/{account_id}/messages",
                params={"access_token": credentials.access_token},
                json={"recipient": {"id": outbound.channel_user_id}, "message": message},
            )
            if response.is_error:
                return SendResult(success=False, error=graph_error(response, "Instagram"))
            message_id = response.json().get("message_id")
        return SendResult(success=True, message_id=message_id)

    async def get_user_profile(self, account_id: str, user_id: str) -> UserProfile:
        credentials = await self._resolve_credentials(account_id)
        response = await self._get_client().get(
            f"{GRAPH_API_BASE}/{user_id}",
            params={
                "fields": "username,name,profile_picture_url",
                "access_token": credentials.access_token,
            },
        )
        if response.is_error:
            logger.info("Instagram profile lookup failed: %s", response.status_code)
            return UserProfile()
        data = response.json()
        return UserProfile(
            display_name=data.get("name") or data.get("username"),
            picture_url=data.get("profile_picture_url"),
        )
