"""
Shared pieces of the Meta Graph platforms (Messenger, Instagram, WhatsApp).

All three sign webhooks with `X-Hub-Signature-256: sha256=<hex>` using the
app secret and subscribe with the same hub.challenge handshake.
"""

from __future__ import annotations

import hmac
from typing import Any, Optional

import httpx

from app.adapters.base import BasePlatformAdapter, as_bytes, hmac_sha256_hex, truncate
from app.schemas.messages import (
    ContentType,
    MessageTemplate,
    QuickReply,
    TemplateAction,
    TemplateActionType,
    UnifiedOutboundMessage,
)

GRAPH_API_VERSION = "v18.0"
GRAPH_API_BASE = f"https://graph.facebook.com/{GRAPH_API_VERSION}"

SIGNATURE_PREFIX = "sha256="

MAX_BUTTON_TITLE = 20
MAX_QUICK_REPLY_TITLE = 20
MAX_BUTTON_TEXT = 640
MAX_ELEMENT_TITLE = 80
MAX_ELEMENT_SUBTITLE = 80
MAX_TEXT = 2000

_MEDIA_ATTACHMENTS = {
    ContentType.IMAGE: "image",
    ContentType.VIDEO: "video",
    ContentType.AUDIO: "audio",
    ContentType.FILE: "file",
}


def graph_error(response: httpx.Response, platform: str) -> str:
    try:
        message = (response.json().get("error") or {}).get("message")
    except ValueError:
        message = None
    return f"{platform} API error: {message or response.status_code}"


class MetaGraphAdapter(BasePlatformAdapter):
    SIGNATURE_HEADER = "x-hub-signature-256"

    def validate_signature(
        self, raw_body: bytes | str, signature: str, secret: str
    ) -> bool:
        if not signature or not secret:
            return False
        provided = signature[len(SIGNATURE_PREFIX):] if signature.startswith(
            SIGNATURE_PREFIX
        ) else signature
        expected = hmac_sha256_hex(secret, as_bytes(raw_body))
        return hmac.compare_digest(expected, provided)

    @staticmethod
    def verify_webhook(
        mode: Optional[str],
        token: Optional[str],
        challenge: Optional[str],
        verify_token: Optional[str],
    ) -> Optional[str]:
        """Subscription handshake: echo the challenge only for a matching token."""
        if mode == "subscribe" and verify_token and token is not None:
            if hmac.compare_digest(token, verify_token):
                return challenge
        return None


def messenger_button(action: TemplateAction) -> dict[str, Any]:
    title = truncate(action.label, MAX_BUTTON_TITLE)
    if action.type == TemplateActionType.URI:
        return {"type": "web_url", "url": action.uri, "title": title}
    return {
        "type": "postback",
        "title": title,
        "payload": action.data or action.text or action.label,
    }


def messenger_quick_replies(replies: list[QuickReply], limit: int) -> list[dict[str, Any]]:
    return [
        {
            "content_type": "text",
            "title": truncate(reply.label, MAX_QUICK_REPLY_TITLE),
            "payload": reply.value,
        }
        for reply in replies[:limit]
    ]


def generic_template(template: MessageTemplate) -> dict[str, Any]:
    element: dict[str, Any] = {
        "title": truncate(template.title or template.text or "", MAX_ELEMENT_TITLE),
        "buttons": [messenger_button(a) for a in template.actions[:3]],
    }
    if template.text and template.title:
        element["subtitle"] = truncate(template.text, MAX_ELEMENT_SUBTITLE)
    if template.thumbnail_url:
        element["image_url"] = template.thumbnail_url
    return {
        "type": "template",
        "payload": {"template_type": "generic", "elements": [element]},
    }


def media_attachment(kind: str, url: Optional[str]) -> dict[str, Any]:
    return {"type": kind, "payload": {"url": url, "is_reusable": True}}


def messenger_messages(
    outbound: UnifiedOutboundMessage,
    template_attachment,
    quick_reply_limit: int,
    supported_media: frozenset[ContentType],
) -> list[dict[str, Any]]:
    """
    Messenger-format message objects for one outbound message.

    A Messenger message holds either text or one attachment, so text plus a
    template becomes two messages. Quick replies ride on the last one.
    """
    messages: list[dict[str, Any]] = []
    if outbound.content_type in supported_media:
        messages.append(
            {"attachment": media_attachment(_MEDIA_ATTACHMENTS[outbound.content_type], outbound.media_url)}
        )
    elif outbound.content_type in _MEDIA_ATTACHMENTS:
        messages.append({"text": outbound.media_url})
    else:
        if outbound.text:
            messages.append({"text": outbound.text[:MAX_TEXT]})
        if outbound.template is not None:
            attachment = template_attachment(outbound.template)
            if attachment is not None:
                messages.append({"attachment": attachment})
            elif not outbound.text and outbound.template.text:
                messages.append({"text": outbound.template.text[:MAX_TEXT]})
    if outbound.quick_replies and messages:
        messages[-1]["quick_replies"] = messenger_quick_replies(
            outbound.quick_replies, quick_reply_limit
        )
    return messages
