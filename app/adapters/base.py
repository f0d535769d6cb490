"""
Channel adapter interface.

Adapters encapsulate platform-specific wire formats and expose the unified
message model to the rest of the system. Every adapter can parse webhooks,
send messages, and validate webhook signatures; profile lookup is optional
and defaults to an empty profile.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from app.core.credentials import CredentialResolver
from app.exceptions import CredentialsNotFoundError
from app.schemas.messages import (
    Channel,
    SendResult,
    UnifiedInboundMessage,
    UnifiedOutboundMessage,
    UserProfile,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


def truncate(value: Optional[str], limit: int) -> Optional[str]:
    """Cut `value` to at most `limit` characters. None stays None."""
    if value is None:
        return None
    return value[:limit]


def from_epoch_millis(value: Any) -> datetime:
    """Platform timestamp in milliseconds -> aware UTC datetime (now if missing)."""
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)


def from_epoch_seconds(value: Any) -> datetime:
    """Platform timestamp in seconds -> aware UTC datetime (now if missing)."""
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)


def hmac_sha256(secret: str, body: bytes) -> bytes:
    return hmac.new(secret.encode(), body, hashlib.sha256).digest()


def hmac_sha256_base64(secret: str, body: bytes) -> str:
    return base64.b64encode(hmac_sha256(secret, body)).decode()


def hmac_sha256_hex(secret: str, body: bytes) -> str:
    return hmac_sha256(secret, body).hex()


def as_bytes(body: bytes | str) -> bytes:
    return body.encode() if isinstance(body, str) else body


class BasePlatformAdapter(ABC):
    """Contract for channel adapters. New platforms implement this interface."""

    channel_type: Channel

    def __init__(
        self,
        credentials: CredentialResolver,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._credentials = credentials
        self._client = http_client
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _resolve_credentials(self, account_id: Optional[str]) -> Any:
        return await self._credentials.resolve(self.channel_type, account_id)

    @abstractmethod
    def parse_webhook(self, raw_payload: Any) -> list[UnifiedInboundMessage]:
        """
        Convert one webhook delivery into zero or more unified messages.

        Events without an actionable message (receipts, echoes, reactions,
        unsupported subtypes) are skipped; an empty list is a valid result.
        """
        ...

    @abstractmethod
    async def _deliver(
        self, account_id: str, outbound: UnifiedOutboundMessage
    ) -> SendResult:
        """Platform-specific send. May raise httpx errors; send_message handles them."""
        ...

    @abstractmethod
    def validate_signature(
        self, raw_body: bytes | str, signature: str, secret: str
    ) -> bool:
        """Return True only if `signature` authenticates `raw_body` under `secret`."""
        ...

    async def send_message(
        self, account_id: str, outbound: UnifiedOutboundMessage
    ) -> SendResult:
        """Send via the platform API. Failures are reported in the result, never raised."""
        if outbound.channel_type != self.channel_type:
            return SendResult(
                success=False,
                error=f"Message targets {outbound.channel_type.value}, "
                f"adapter handles {self.channel_type.value}",
            )
        try:
            return await self._deliver(account_id, outbound)
        except CredentialsNotFoundError as e:
            logger.warning("%s send skipped: %s", self.channel_type.value, e)
            return SendResult(success=False, error="Channel credentials not found")
        except httpx.HTTPError as e:
            logger.warning("%s send failed: %s", self.channel_type.value, e)
            return SendResult(
                success=False, error=str(e) or type(e).__name__, retryable=True
            )

    async def get_user_profile(self, account_id: str, user_id: str) -> UserProfile:
        """Platforms without a profile API return an empty profile."""
        return UserProfile()
