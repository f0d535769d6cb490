import base64
import hashlib
import hmac
import os

os.environ.setdefault("ENV", "test")

import httpx
import pytest
from cryptography.fernet import Fernet

from app.config import Settings
from app.core.credentials import CredentialResolver

LINE_SECRET = "line-secret"
KAKAO_KEY = "kakao-rest-key"
META_SECRET = "meta-app-secret"
WECHAT_TOKEN = "wechat-token"
META_VERIFY_TOKEN = "meta-verify"


def make_settings(**overrides) -> Settings:
    values = dict(
        line_channel_access_token="line-access-token",
        line_channel_secret=LINE_SECRET,
        kakao_rest_api_key=KAKAO_KEY,
        facebook_page_access_token="fb-page-token",
        facebook_app_secret=META_SECRET,
        instagram_access_token="ig-token",
        whatsapp_access_token="wa-token",
        wechat_app_id="wx-app-id",
        wechat_app_secret="wx-app-secret",
        wechat_token=WECHAT_TOKEN,
        deepl_api_key="deepl-key:fx",
        META_WEBHOOK_VERIFY_TOKEN=META_VERIFY_TOKEN,
    )
    values.update(overrides)
    return Settings(**values)


def mock_client(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by `handler(request)`."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def line_signature(body: bytes, secret: str = LINE_SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def meta_signature(body: bytes, secret: str = META_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def flip_byte(body: bytes, index: int = 0) -> bytes:
    return body[:index] + bytes([body[index] ^ 0x01]) + body[index + 1:]


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def credentials(settings) -> CredentialResolver:
    return CredentialResolver(settings=settings)


@pytest.fixture
def fernet_key(monkeypatch) -> str:
    key = Fernet.generate_key().decode()
    monkeypatch.setenv("CREDENTIAL_MASTER_KEY", key)
    return key


def build_test_state(settings, credentials=None, http_client=None, **overrides):
    """AppState wired with a real channel registry and mocked pipeline collaborators."""
    from unittest.mock import AsyncMock, MagicMock

    from app.core.app_state import AppState
    from app.core.registry import build_registry_from_env
    from app.core.tenants import InMemoryTenantDirectory
    from app.infra.cache import InMemoryCache

    inbound = MagicMock()
    inbound.execute = AsyncMock(return_value=None)
    translator = MagicMock()
    translator.aclose = AsyncMock()
    suggestions = MagicMock()
    suggestions.suggest = AsyncMock(return_value="")
    values = dict(
        settings=settings,
        cache=InMemoryCache(),
        credentials=credentials or CredentialResolver(settings=settings),
        registry=build_registry_from_env(settings=settings, http_client=http_client),
        tenants=InMemoryTenantDirectory(),
        translator=translator,
        orchestrator=MagicMock(),
        suggestions=suggestions,
        inbound=inbound,
    )
    values.update(overrides)
    return AppState(**values)
