"""
WhatsApp Cloud API adapter.

The account id is the business phone number id. Inbound media arrives as a
media id; it is exposed as `whatsapp://media/<id>` and resolved on demand
with get_media_url/download_media. Free-form replies are only allowed within
24 hours of the customer's last message; outside that window a pre-approved
template must be used (send_template_message).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from app.adapters.base import from_epoch_seconds, truncate
from app.adapters.meta import GRAPH_API_BASE, MetaGraphAdapter, graph_error
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
)

logger = logging.getLogger(__name__)

MEDIA_URL_PREFIX = "whatsapp://media/"
SERVICE_WINDOW = timedelta(hours=24)

MAX_REPLY_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_BUTTON_ID = 256
MAX_ROW_TITLE = 24
MAX_ROW_DESCRIPTION = 72
MAX_LIST_ROWS = 10

_MEDIA_TYPES = {
    "image": ContentType.IMAGE,
    "video": ContentType.VIDEO,
    "audio": ContentType.AUDIO,
    "document": ContentType.FILE,
}

_OUTBOUND_MEDIA = {
    ContentType.IMAGE: "image",
    ContentType.VIDEO: "video",
    ContentType.AUDIO: "audio",
    ContentType.FILE: "document",
}


def media_id_from_url(media_url: str) -> Optional[str]:
    if media_url and media_url.startswith(MEDIA_URL_PREFIX):
        return media_url[len(MEDIA_URL_PREFIX):]
    return None


def is_within_service_window(
    last_inbound_at: datetime, now: Optional[datetime] = None
) -> bool:
    """True while free-form messages may still be sent to the customer."""
    now = now or datetime.now(timezone.utc)
    return now - last_inbound_at < SERVICE_WINDOW


class WhatsAppAdapter(MetaGraphAdapter):
    channel_type = Channel.WHATSAPP

    def parse_webhook(self, raw_payload: dict[str, Any]) -> list[UnifiedInboundMessage]:
        if raw_payload.get("object") != "whatsapp_business_account":
            return []
        messages: list[UnifiedInboundMessage] = []
        for entry in raw_payload.get("entry") or []:
            for change in entry.get("changes") or []:
                if change.get("field") != "messages":
                    continue
                value = change.get("value") or {}
                phone_number_id = (value.get("metadata") or {}).get("phone_number_id", "")
                names = {
                    c.get("wa_id"): (c.get("profile") or {}).get("name")
                    for c in value.get("contacts") or []
                }
                # Status updates (sent/delivered/read) arrive without `messages`.
                for message in value.get("messages") or []:
                    parsed = self._parse_message(
                        message, phone_number_id, names.get(message.get("from"))
                    )
                    if parsed is not None:
                        messages.append(parsed)
        return messages

    def _parse_message(
        self,
        message: dict[str, Any],
        phone_number_id: str,
        sender_name: Optional[str],
    ) -> Optional[UnifiedInboundMessage]:
        kind = message.get("type")
        fields = self._content_fields(kind, message)
        if fields is None or not message.get("from"):
            return None
        return UnifiedInboundMessage(
            channel_type=Channel.WHATSAPP,
            channel_account_id=phone_number_id,
            channel_user_id=message["from"],
            channel_username=sender_name,
            message_id=message.get("id", ""),
            timestamp=from_epoch_seconds(message.get("timestamp")),
            raw_payload=message,
            **fields,
        )

    @staticmethod
    def _content_fields(kind: Optional[str], message: dict[str, Any]) -> Optional[dict[str, Any]]:
        if kind == "text":
            body = (message.get("text") or {}).get("body")
            return None if body is None else {"content_type": ContentType.TEXT, "text": body}
        if kind in _MEDIA_TYPES:
            media = message.get(kind) or {}
            caption = media.get("caption")
            if kind == "document":
                caption = caption or media.get("filename")
            return {
                "content_type": _MEDIA_TYPES[kind],
                "text": caption,
                "media_url": f"{MEDIA_URL_PREFIX}{media['id']}" if media.get("id") else None,
                "media_type": media.get("mime_type"),
            }
        if kind == "sticker":
            sticker_id = (message.get("sticker") or {}).get("id")
            if not sticker_id:
                return None
            return {
                "content_type": ContentType.STICKER,
                "sticker": Sticker(package_id="whatsapp", sticker_id=sticker_id),
            }
        if kind == "location":
            loc = message.get("location") or {}
            if loc.get("latitude") is None or loc.get("longitude") is None:
                return None
            return {
                "content_type": ContentType.LOCATION,
                "location": Location(
                    latitude=loc["latitude"],
                    longitude=loc["longitude"],
                    address=loc.get("address") or loc.get("name"),
                ),
            }
        if kind == "interactive":
            interactive = message.get("interactive") or {}
            reply = interactive.get("button_reply") or interactive.get("list_reply")
            if not reply or not reply.get("id"):
                return None
            return {"content_type": ContentType.TEXT, "text": reply["id"]}
        if kind == "button":
            button = message.get("button") or {}
            text = button.get("payload") or button.get("text")
            return None if text is None else {"content_type": ContentType.TEXT, "text": text}
        if kind == "contacts":
            contacts = message.get("contacts") or []
            if not contacts:
                return None
            contact = contacts[0]
            name = (contact.get("name") or {}).get("formatted_name", "")
            phones = contact.get("phones") or []
            phone = f" - {phones[0]['phone']}" if phones and phones[0].get("phone") else ""
            return {"content_type": ContentType.TEXT, "text": f"[Contact: {name}{phone}]"}
        # reaction, system, unknown
        return None

    @staticmethod
    def _reply_buttons(items: list[tuple[str, str]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "reply",
                "reply": {
                    "id": truncate(reply_id, MAX_BUTTON_ID),
                    "title": truncate(title, MAX_BUTTON_TITLE),
                },
            }
            for reply_id, title in items
        ]

    def _template_payload(self, template: MessageTemplate) -> dict[str, Any]:
        if template.type == TemplateType.BUTTONS:
            interactive: dict[str, Any] = {
                "type": "button",
                "body": {"text": template.text or template.title or ""},
                "action": {
                    "buttons": self._reply_buttons(
                        [
                            (a.data or a.text or f"btn_{i}", a.label)
                            for i, a in enumerate(template.actions[:MAX_REPLY_BUTTONS])
                        ]
                    )
                },
            }
            if template.thumbnail_url:
                interactive["header"] = {"type": "image", "image": {"link": template.thumbnail_url}}
            elif template.title:
                interactive["header"] = {"type": "text", "text": template.title}
            return {"type": "interactive", "interactive": interactive}
        if template.type == TemplateType.CAROUSEL:
            # No carousel on WhatsApp; a single-section list is the closest fit.
            rows = []
            for i, action in enumerate(template.actions[:MAX_LIST_ROWS]):
                row = {
                    "id": action.data or f"item_{i}",
                    "title": truncate(action.label, MAX_ROW_TITLE),
                }
                if action.text:
                    row["description"] = truncate(action.text, MAX_ROW_DESCRIPTION)
                rows.append(row)
            return {
                "type": "interactive",
                "interactive": {
                    "type": "list",
                    "body": {"text": template.text or template.title or "Options"},
                    "action": {
                        "button": "View Options",
                        "sections": [{"title": template.title or "Options", "rows": rows}],
                    },
                },
            }
        if template.type == TemplateType.CONFIRM:
            return {
                "type": "interactive",
                "interactive": {
                    "type": "button",
                    "body": {"text": template.text or ""},
                    "action": {
                        "buttons": self._reply_buttons(
                            [
                                (a.data or f"confirm_{i}", a.label)
                                for i, a in enumerate(template.actions[:2])
                            ]
                        )
                    },
                },
            }
        if template.type == TemplateType.IMAGE and template.thumbnail_url:
            image: dict[str, Any] = {"link": template.thumbnail_url}
            if template.text:
                image["caption"] = template.text
            return {"type": "image", "image": image}
        return {"type": "text", "text": {"body": template.text or ""}}

    def build_payload(self, outbound: UnifiedOutboundMessage) -> dict[str, Any]:
        """Cloud API request body for one outbound message."""
        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": outbound.channel_user_id,
        }
        if outbound.content_type in _OUTBOUND_MEDIA:
            kind = _OUTBOUND_MEDIA[outbound.content_type]
            payload.update({"type": kind, kind: {"link": outbound.media_url}})
            return payload
        if outbound.template is not None and not outbound.text:
            payload.update(self._template_payload(outbound.template))
            return payload
        if outbound.quick_replies:
            # Quick replies become reply buttons; the id carries the reply value.
            payload.update(
                {
                    "type": "interactive",
                    "interactive": {
                        "type": "button",
                        "body": {"text": outbound.text},
                        "action": {
                            "buttons": self._reply_buttons(
                                [
                                    (reply.value, reply.label)
                                    for reply in outbound.quick_replies[:MAX_REPLY_BUTTONS]
                                ]
                            )
                        },
                    },
                }
            )
            return payload
        payload.update({"type": "text", "text": {"preview_url": True, "body": outbound.text}})
        return payload

    async def _post_message(self, account_id: str, payload: dict[str, Any]) -> SendResult:
        credentials = await self._resolve_credentials(account_id)
        response = await self._get_client().post(
            f"{GRAPH_API_BASE}/{account_id}/messages",
            json=payload,
            headers={"Authorization": f"Bearer {credentials.access_token}"},
        )
        if response.is_error:
            return SendResult(success=False, error=graph_error(response, "WhatsApp"))
        sent = response.json().get("messages") or [{}]
        return SendResult(success=True, message_id=sent[0].get("id"))

    async def _deliver(
        self, account_id: str, outbound: UnifiedOutboundMessage
    ) -> SendResult:
        result = await self._post_message(account_id, self.build_payload(outbound))
        # Text plus a template goes out as two messages.
        if result.success and outbound.text and outbound.template is not None:
            template_payload = {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": outbound.channel_user_id,
                **self._template_payload(outbound.template),
            }
            result = await self._post_message(account_id, template_payload)
        return result

    async def send_template_message(
        self,
        account_id: str,
        recipient: str,
        template_name: str,
        language_code: str,
        components: Optional[list[dict[str, Any]]] = None,
    ) -> SendResult:
        """Send a pre-approved template (required outside the 24h service window)."""
        template: dict[str, Any] = {"name": template_name, "language": {"code": language_code}}
        if components:
            template["components"] = components
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": "template",
            "template": template,
        }
        try:
            return await self._post_message(account_id, payload)
        except httpx.HTTPError as e:
            logger.warning("WhatsApp template send failed: %s", e)
            return SendResult(success=False, error=str(e) or type(e).__name__)

    async def get_media_url(self, account_id: str, media_id: str) -> Optional[str]:
        credentials = await self._resolve_credentials(account_id)
        response = await self._get_client().get(
            f"{GRAPH_API_BASE}/{media_id}",
            headers={"Authorization": f"Bearer {credentials.access_token}"},
        )
        if response.is_error:
            return None
        return response.json().get("url")

    async def download_media(self, account_id: str, media_id: str) -> Optional[bytes]:
        url = await self.get_media_url(account_id, media_id)
        if not url:
            return None
        credentials = await self._resolve_credentials(account_id)
        response = await self._get_client().get(
            url, headers={"Authorization": f"Bearer {credentials.access_token}"}
        )
        if response.is_error:
            return None
        return response.content

    async def mark_as_read(self, account_id: str, message_id: str) -> bool:
        credentials = await self._resolve_credentials(account_id)
        try:
            response = await self._get_client().post(
                f"{GRAPH_API_BASE}/{account_id}/messages",
                json={
                    "messaging_product": "whatsapp",
                    "status": "read",
                    "message_id": message_id,
                },
                headers={"Authorization": f"Bearer {credentials.access_token}"},
            )
        except httpx.HTTPError as e:
            logger.warning("WhatsApp mark-as-read failed: %s", e)
            return False
        return not response.is_error
