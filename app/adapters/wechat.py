"""
WeChat Official Account adapter.

Webhook bodies are XML. WeChat signs the query string rather than the body:
signature = sha1(sorted([token, timestamp, nonce]) joined). Replies go through
the customer-service message API, which needs a short-lived access token.
Voice and video arrive as MediaIds, exposed as `wechat://media/<id>` and
fetched with `download_media`.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any, Optional

from lxml import etree

from app.adapters.base import BasePlatformAdapter, as_bytes, from_epoch_seconds
from app.core.token_cache import AccessTokenCache
from app.exceptions import PlatformAuthError, WebhookParseError
from app.schemas.messages import (
    Channel,
    ContentType,
    Location,
    SendResult,
    UnifiedInboundMessage,
    UnifiedOutboundMessage,
    UserProfile,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.weixin.qq.com/cgi-bin"
ERRCODE_WINDOW_EXPIRED = 45015
MEDIA_URL_PREFIX = "wechat://media/"
WINDOW_EXPIRED_ERROR = (
    "Customer service message window expired. Use template message instead."
)

_XML_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


def parse_xml(body: bytes | str) -> dict[str, str]:
    """Flatten a WeChat `<xml>` document into {tag: text}."""
    try:
        root = etree.fromstring(as_bytes(body), parser=_XML_PARSER)
    except etree.XMLSyntaxError as e:
        raise WebhookParseError(f"Invalid WeChat XML: {e}") from e
    return {child.tag: (child.text or "") for child in root if isinstance(child.tag, str)}


def media_id_from_url(media_url: Optional[str]) -> Optional[str]:
    if media_url and media_url.startswith(MEDIA_URL_PREFIX):
        return media_url[len(MEDIA_URL_PREFIX):]
    return None


def _media_url(msg: dict[str, str]) -> Optional[str]:
    media_id = msg.get("MediaId")
    return f"{MEDIA_URL_PREFIX}{media_id}" if media_id else None


def _cdata(value: str) -> str:
    return "<![CDATA[" + value.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def build_xml_response(to_user: str, from_user: str, content: str) -> str:
    """Passive text reply returned directly in the webhook response body."""
    return (
        "<xml>"
        f"<ToUserName>{_cdata(to_user)}</ToUserName>"
        f"<FromUserName>{_cdata(from_user)}</FromUserName>"
        f"<CreateTime>{int(time.time())}</CreateTime>"
        "<MsgType><![CDATA[text]]></MsgType>"
        f"<Content>{_cdata(content)}</Content>"
        "</xml>"
    )


def wechat_signature(token: str, timestamp: str, nonce: str) -> str:
    return hashlib.sha1("".join(sorted([token, timestamp, nonce])).encode()).hexdigest()


class WeChatAdapter(BasePlatformAdapter):
    channel_type = Channel.WECHAT

    def __init__(self, *args: Any, token_cache: Optional[AccessTokenCache] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._tokens = token_cache or AccessTokenCache()

    @staticmethod
    def signature_payload(timestamp: str, nonce: str) -> str:
        """The "body" WeChat signs: its timestamp and nonce query parameters."""
        return f"{timestamp},{nonce}"

    def validate_signature(
        self, raw_body: bytes | str, signature: str, secret: str
    ) -> bool:
        """`raw_body` is `signature_payload(timestamp, nonce)`; `secret` is the token."""
        if not signature or not secret:
            return False
        timestamp, sep, nonce = (
            raw_body.decode() if isinstance(raw_body, bytes) else raw_body
        ).partition(",")
        if not sep:
            return False
        expected = wechat_signature(secret, timestamp, nonce)
        return hmac.compare_digest(expected, signature)

    def verify_url(
        self, signature: str, timestamp: str, nonce: str, echostr: str, token: str
    ) -> Optional[str]:
        """Server URL verification: echo `echostr` only for a valid signature."""
        if self.validate_signature(self.signature_payload(timestamp, nonce), signature, token):
            return echostr
        return None

    def parse_webhook(self, raw_payload: bytes | str | dict[str, str]) -> list[UnifiedInboundMessage]:
        msg = raw_payload if isinstance(raw_payload, dict) else parse_xml(raw_payload)
        msg_type = msg.get("MsgType")
        if msg_type == "event":
            logger.info("WeChat event ignored: %s", msg.get("Event"))
            return []
        if not msg.get("MsgId") or not msg.get("FromUserName"):
            return []

        fields = self._content_fields(msg_type, msg)
        if fields is None:
            logger.info("Unsupported WeChat message type: %s", msg_type)
            return []
        return [
            UnifiedInboundMessage(
                channel_type=Channel.WECHAT,
                channel_account_id=msg.get("ToUserName", ""),
                channel_user_id=msg["FromUserName"],
                message_id=str(msg["MsgId"]),
                timestamp=from_epoch_seconds(msg.get("CreateTime")),
                raw_payload=msg,
                **fields,
            )
        ]

    @staticmethod
    def _content_fields(msg_type: Optional[str], msg: dict[str, str]) -> Optional[dict[str, Any]]:
        if msg_type == "text":
            return {"content_type": ContentType.TEXT, "text": msg.get("Content", "")}
        if msg_type == "image":
            return {
                "content_type": ContentType.IMAGE,
                "media_url": msg.get("PicUrl") or _media_url(msg),
            }
        if msg_type == "voice":
            return {
                "content_type": ContentType.AUDIO,
                "text": msg.get("Recognition") or None,
                "media_url": _media_url(msg),
                "media_type": msg.get("Format") or None,
            }
        if msg_type in ("video", "shortvideo"):
            return {"content_type": ContentType.VIDEO, "media_url": _media_url(msg)}
        if msg_type == "location":
            try:
                latitude = float(msg["Location_X"])
                longitude = float(msg["Location_Y"])
            except (KeyError, ValueError):
                return None
            return {
                "content_type": ContentType.LOCATION,
                "location": Location(
                    latitude=latitude, longitude=longitude, address=msg.get("Label") or None
                ),
            }
        if msg_type == "link":
            return {
                "content_type": ContentType.TEXT,
                "text": f"[Link] {msg.get('Title', '')}\n{msg.get('Description', '')}\n{msg.get('Url', '')}",
            }
        return None

    async def _access_token(self, account_id: str) -> str:
        credentials = await self._resolve_credentials(account_id)

        async def fetch() -> tuple[str, int]:
            response = await self._get_client().get(
                f"{API_BASE}/token",
                params={
                    "grant_type": "client_credential",
                    "appid": credentials.app_id,
                    "secret": credentials.app_secret,
                },
            )
            response.raise_for_status()
            data = response.json()
            if data.get("errcode"):
                raise PlatformAuthError(
                    f"WeChat token error: {data['errcode']} - {data.get('errmsg')}"
                )
            return data["access_token"], int(data.get("expires_in", 7200))

        return await self._tokens.get_or_refresh(credentials.app_id, fetch)

    @staticmethod
    def build_payload(outbound: UnifiedOutboundMessage) -> dict[str, Any]:
        if outbound.content_type == ContentType.TEXT:
            content = outbound.text or (outbound.template.text if outbound.template else "") or ""
        elif outbound.content_type == ContentType.IMAGE:
            # Images need a prior media upload; send the link instead.
            content = f"[Image] {outbound.media_url}"
        else:
            content = outbound.media_url or ""
        return {
            "touser": outbound.channel_user_id,
            "msgtype": "text",
            "text": {"content": content},
        }

    async def _deliver(
        self, account_id: str, outbound: UnifiedOutboundMessage
    ) -> SendResult:
        try:
            token = await self._access_token(account_id)
        except PlatformAuthError as e:
            return SendResult(success=False, error=str(e))
        response = await self._get_client().post(
            f"{API_BASE}/message/custom/send",
            params={"access_token": token},
            json=self.build_payload(outbound),
        )
        response.raise_for_status()
        result = response.json()
        errcode = result.get("errcode") or 0
        if errcode == ERRCODE_WINDOW_EXPIRED:
            return SendResult(success=False, error=WINDOW_EXPIRED_ERROR)
        if errcode:
            return SendResult(
                success=False,
                error=f"WeChat API error: {errcode} - {result.get('errmsg')}",
            )
        msgid = result.get("msgid")
        return SendResult(success=True, message_id=str(msgid) if msgid is not None else None)

    async def get_user_profile(self, account_id: str, user_id: str) -> UserProfile:
        try:
            token = await self._access_token(account_id)
        except PlatformAuthError as e:
            logger.info("WeChat profile lookup skipped: %s", e)
            return UserProfile()
        response = await self._get_client().get(
            f"{API_BASE}/user/info",
            params={"access_token": token, "openid": user_id, "lang": "zh_CN"},
        )
        data = response.json()
        if data.get("errcode"):
            logger.info("WeChat user info error: %s", data.get("errcode"))
            return UserProfile()
        return UserProfile(display_name=data.get("nickname"), picture_url=data.get("headimgurl"))

    async def download_media(self, account_id: str, media_id: str) -> Optional[bytes]:
        """
        Fetch inbound media by the MediaId carried in `wechat://media/<id>`.
        WeChat answers errors with a JSON body instead of the file.
        """
        try:
            token = await self._access_token(account_id)
        except PlatformAuthError as e:
            logger.info("WeChat media download skipped: %s", e)
            return None
        response = await self._get_client().get(
            f"{API_BASE}/media/get",
            params={"access_token": token, "media_id": media_id},
        )
        if response.is_error:
            return None
        content_type = response.headers.get("content-type", "")
        if content_type.startswith(("application/json", "text/plain")):
            logger.info("WeChat media error for %s: %s", media_id, response.text)
            return None
        return response.content
