from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from app.adapters.base import BasePlatformAdapter
from app.adapters.facebook import FacebookAdapter
from app.adapters.instagram import InstagramAdapter
from app.adapters.kakao import KakaoAdapter
from app.adapters.line import LineAdapter
from app.adapters.wechat import WeChatAdapter
from app.adapters.whatsapp import WhatsAppAdapter
from app.config import Settings, get_settings
from app.core.credentials import CredentialResolver, CredentialStore
from app.exceptions import ChannelNotSupportedError
from app.schemas.messages import (
    Channel,
    SendResult,
    UnifiedInboundMessage,
    UnifiedOutboundMessage,
    UserProfile,
)

logger = logging.getLogger(__name__)


def _as_channel(channel: Channel | str) -> Optional[Channel]:
    if isinstance(channel, Channel):
        return channel
    try:
        return Channel(str(channel).lower())
    except ValueError:
        return None


class ChannelRegistry:
    """
    Maps a channel tag to its adapter. The rest of the system talks to
    channels only through this registry.
    """

    def __init__(self) -> None:
        self._adapters: Dict[Channel, BasePlatformAdapter] = {}

    def register(self, adapter: BasePlatformAdapter) -> None:
        if adapter.channel_type in self._adapters:
            raise ValueError(f"Adapter already registered: {adapter.channel_type.value}")
        self._adapters[adapter.channel_type] = adapter

    def get_adapter(self, channel: Channel | str) -> Optional[BasePlatformAdapter]:
        resolved = _as_channel(channel)
        return self._adapters.get(resolved) if resolved is not None else None

    def require_adapter(self, channel: Channel | str) -> BasePlatformAdapter:
        adapter = self.get_adapter(channel)
        if adapter is None:
            raise ChannelNotSupportedError(str(getattr(channel, "value", channel)))
        return adapter

    def supported_channels(self) -> list[Channel]:
        return list(self._adapters)

    def parse_webhook(
        self, channel: Channel | str, raw_payload: Any
    ) -> list[UnifiedInboundMessage]:
        return self.require_adapter(channel).parse_webhook(raw_payload)

    async def send_message(
        self, channel: Channel | str, account_id: str, outbound: UnifiedOutboundMessage
    ) -> SendResult:
        adapter = self.get_adapter(channel)
        if adapter is None:
            return SendResult(success=False, error=f"Channel not supported: {channel}")
        return await adapter.send_message(account_id, outbound)

    def validate_signature(
        self, channel: Channel | str, raw_body: bytes | str, signature: str, secret: str
    ) -> bool:
        adapter = self.get_adapter(channel)
        if adapter is None:
            return False
        return adapter.validate_signature(raw_body, signature, secret)

    async def get_user_profile(
        self, channel: Channel | str, account_id: str, user_id: str
    ) -> UserProfile:
        adapter = self.get_adapter(channel)
        if adapter is None:
            return UserProfile()
        try:
            return await adapter.get_user_profile(account_id, user_id)
        except (httpx.HTTPError, ValueError) as e:
            logger.info("Profile lookup failed for %s: %s", adapter.channel_type.value, e)
            return UserProfile()

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()


def build_registry_from_env(
    settings: Optional[Settings] = None,
    store: Optional[CredentialStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ChannelRegistry:
    """Registry with every supported platform, sharing one credential resolver."""
    settings = settings or get_settings()
    credentials = CredentialResolver(store=store, settings=settings)
    registry = ChannelRegistry()
    for adapter_cls in (
        LineAdapter,
        KakaoAdapter,
        FacebookAdapter,
        InstagramAdapter,
        WhatsAppAdapter,
        WeChatAdapter,
    ):
        registry.register(
            adapter_cls(
                credentials,
                http_client=http_client,
                timeout=settings.channel_http_timeout_seconds,
            )
        )
    return registry
