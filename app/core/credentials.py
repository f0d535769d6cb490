"""Channel credential models, encryption, and per-account resolution."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional, Protocol, Type

from cryptography.fernet import Fernet, InvalidToken
from pydantic import AliasChoices, BaseModel, Field, ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.config import Settings, get_settings
from app.db import DatabaseManager, db_manager
from app.exceptions import CredentialsNotFoundError
from app.infra.logging_config import get_logger
from app.schemas.messages import Channel

logger = get_logger("credentials")


def _get_fernet() -> Fernet:
    """Get a Fernet instance with the credential master key."""
    settings = get_settings()
    key = settings.credential_master_key or settings.fernet_key
    if not key:
        raise ValueError(
            "CREDENTIAL_MASTER_KEY or FERNET_KEY must be set for credential encryption"
        )
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_credential_fields(fields: Dict[str, Any]) -> bytes:
    """Encrypt credential fields."""
    return _get_fernet().encrypt(json.dumps(fields).encode())


def decrypt_credential_fields(encrypted_data: bytes) -> Dict[str, Any]:
    """Decrypt credential fields."""
    return json.loads(_get_fernet().decrypt(encrypted_data))


class LineCredentials(BaseModel):
    access_token: str = Field(
        validation_alias=AliasChoices("access_token", "channel_access_token")
    )
    channel_secret: Optional[str] = None


class KakaoCredentials(BaseModel):
    api_key: str = Field(validation_alias=AliasChoices("api_key", "rest_api_key"))
    sender_key: Optional[str] = None
    template_code: Optional[str] = None
    callback_url: Optional[str] = None


class FacebookCredentials(BaseModel):
    page_access_token: str = Field(
        validation_alias=AliasChoices("page_access_token", "access_token")
    )
    app_secret: Optional[str] = None
    verify_token: Optional[str] = None


class InstagramCredentials(BaseModel):
    access_token: str = Field(
        validation_alias=AliasChoices("access_token", "page_access_token")
    )
    app_secret: Optional[str] = None
    verify_token: Optional[str] = None


class WhatsAppCredentials(BaseModel):
    access_token: str = Field(
        validation_alias=AliasChoices("system_user_access_token", "access_token")
    )
    app_secret: Optional[str] = None
    verify_token: Optional[str] = None


class WeChatCredentials(BaseModel):
    app_id: str
    app_secret: str
    token: Optional[str] = None


credential_models: Dict[Channel, Type[BaseModel]] = {
    Channel.LINE: LineCredentials,
    Channel.KAKAO: KakaoCredentials,
    Channel.FACEBOOK: FacebookCredentials,
    Channel.INSTAGRAM: InstagramCredentials,
    Channel.WHATSAPP: WhatsAppCredentials,
    Channel.WECHAT: WeChatCredentials,
}


# Field holding the secret each platform signs its webhooks with.
WEBHOOK_SECRET_FIELDS: Dict[Channel, tuple[str, ...]] = {
    Channel.LINE: ("channel_secret",),
    Channel.KAKAO: ("api_key", "rest_api_key"),
    Channel.FACEBOOK: ("app_secret",),
    Channel.INSTAGRAM: ("app_secret",),
    Channel.WHATSAPP: ("app_secret",),
    Channel.WECHAT: ("token",),
}


def env_credential_fields(channel: Channel, settings: Settings) -> Dict[str, Any]:
    """Environment fallback used when an account has no stored credentials."""
    fields: Dict[Channel, Dict[str, Any]] = {
        Channel.LINE: {
            "access_token": settings.line_channel_access_token,
            "channel_secret": settings.line_channel_secret,
        },
        Channel.KAKAO: {
            "api_key": settings.kakao_rest_api_key,
            "sender_key": settings.kakao_sender_key,
            "template_code": settings.kakao_template_code,
        },
        Channel.FACEBOOK: {
            "page_access_token": settings.facebook_page_access_token,
            "app_secret": settings.facebook_app_secret,
            "verify_token": settings.meta_verify_token,
        },
        Channel.INSTAGRAM: {
            "access_token": settings.instagram_access_token,
            "app_secret": settings.facebook_app_secret,
            "verify_token": settings.meta_verify_token,
        },
        Channel.WHATSAPP: {
            "access_token": settings.whatsapp_access_token,
            "app_secret": settings.facebook_app_secret,
            "verify_token": settings.meta_verify_token,
        },
        Channel.WECHAT: {
            "app_id": settings.wechat_app_id,
            "app_secret": settings.wechat_app_secret,
            "token": settings.wechat_token,
        },
    }
    return {k: v for k, v in fields[channel].items() if v is not None}


class CredentialStore(Protocol):
    """Returns the encrypted credential blob for one channel account, if any."""

    async def fetch(self, channel: Channel, account_id: str) -> Optional[bytes]: ...


class InMemoryCredentialStore:
    def __init__(self) -> None:
        self._blobs: Dict[tuple[Channel, str], bytes] = {}

    def put(self, channel: Channel, account_id: str, fields: Dict[str, Any]) -> None:
        self._blobs[(channel, account_id)] = encrypt_credential_fields(fields)

    async def fetch(self, channel: Channel, account_id: str) -> Optional[bytes]:
        return self._blobs.get((channel, account_id))


class SqlCredentialStore:
    """Reads `channel_accounts.credentials_encrypted` for one account."""

    QUERY = text(
        "SELECT credentials_encrypted FROM channel_accounts "
        "WHERE channel_type = :channel AND account_id = :account_id"
    )

    def __init__(self, manager: DatabaseManager = db_manager) -> None:
        self._manager = manager

    def _fetch_sync(self, channel: Channel, account_id: str) -> Optional[bytes]:
        with self._manager.db_session() as db:
            row = db.execute(
                self.QUERY, {"channel": channel.value, "account_id": account_id}
            ).first()
        if row is None or row[0] is None:
            return None
        value = row[0]
        return value.encode() if isinstance(value, str) else bytes(value)

    async def fetch(self, channel: Channel, account_id: str) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(self._fetch_sync, channel, account_id)
        except SQLAlchemyError as e:
            logger.warning(
                "Credential lookup failed for %s/%s: %s", channel.value, account_id, e
            )
            return None


class CredentialResolver:
    """
    Resolve credentials for a channel account.

    Stored (encrypted) credentials win; otherwise the environment fallback is
    used. Raises CredentialsNotFoundError when neither yields a valid model.
    """

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()

    async def _stored_fields(
        self, channel: Channel, account_id: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        if self._store is None or not account_id:
            return None
        blob = await self._store.fetch(channel, account_id)
        if blob is None:
            return None
        try:
            return decrypt_credential_fields(blob)
        except (InvalidToken, ValueError) as e:
            logger.warning(
                "Stored credentials for %s/%s are unreadable: %s",
                channel.value,
                account_id,
                e,
            )
            return None

    async def resolve(self, channel: Channel, account_id: Optional[str] = None) -> Any:
        model = credential_models[channel]
        fields = await self._stored_fields(channel, account_id)
        if fields is None:
            fields = env_credential_fields(channel, self._settings)
        try:
            return model.model_validate(fields)
        except ValidationError as e:
            raise CredentialsNotFoundError(channel.value, account_id) from e

    async def webhook_secret(
        self, channel: Channel, account_id: Optional[str] = None
    ) -> Optional[str]:
        """Secret used to verify inbound webhooks; None when none is configured."""
        fields = await self._stored_fields(channel, account_id)
        if fields is None:
            fields = env_credential_fields(channel, self._settings)
        for name in WEBHOOK_SECRET_FIELDS[channel]:
            if fields.get(name):
                return fields[name]
        return None
