"""Tenant lookup: which tenant owns a channel account, and its AI policy."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import text
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.db import DatabaseManager, db_manager
from app.infra.cache import TENANT_TTL_SECONDS, Cache, tenant_key
from app.infra.logging_config import get_logger
from app.schemas.messages import Channel
from app.schemas.tenant import ChannelAccount, TenantAIPolicy

logger = get_logger("tenants")


class TenantDirectory(Protocol):
    async def resolve_account(
        self, channel: Channel, account_id: str
    ) -> Optional[ChannelAccount]: ...

    async def get_policy(self, tenant_id: str) -> Optional[TenantAIPolicy]: ...


class InMemoryTenantDirectory:
    def __init__(self) -> None:
        self._accounts: Dict[tuple[Channel, str], ChannelAccount] = {}
        self._policies: Dict[str, TenantAIPolicy] = {}

    def add_account(
        self,
        channel: Channel,
        account_id: str,
        tenant_id: str,
        default_language: Optional[str] = None,
    ) -> None:
        self._accounts[(channel, account_id)] = ChannelAccount(
            tenant_id=tenant_id, default_language=default_language
        )

    def set_policy(self, tenant_id: str, policy: TenantAIPolicy) -> None:
        self._policies[tenant_id] = policy

    async def resolve_account(
        self, channel: Channel, account_id: str
    ) -> Optional[ChannelAccount]:
        return self._accounts.get((channel, account_id))

    async def get_policy(self, tenant_id: str) -> Optional[TenantAIPolicy]:
        return self._policies.get(tenant_id)


def policy_from_row(row: Any) -> TenantAIPolicy:
    """Tenant row (display_name, specialty, ai_config) -> TenantAIPolicy."""
    # Null values fall back to the field defaults.
    config = {key: value for key, value in (row.ai_config or {}).items() if value is not None}
    config.setdefault("organization_name", config.get("hospital_name") or row.display_name)
    config.setdefault("specialty", row.specialty)
    return TenantAIPolicy.model_validate(config)


class SqlTenantDirectory:
    """
    Reads `channel_accounts` and `tenants`. Policies are cached for an hour;
    database errors and invalid `ai_config` documents are logged and reported
    as "not found".
    """

    ACCOUNT_QUERY = text(
        "SELECT ca.tenant_id, t.settings ->> 'default_language' AS default_language "
        "FROM channel_accounts ca JOIN tenants t ON t.id = ca.tenant_id "
        "WHERE ca.channel_type = :channel AND ca.account_id = :account_id "
        "AND ca.is_active"
    )
    POLICY_QUERY = text(
        "SELECT display_name, specialty, ai_config FROM tenants WHERE id = :tenant_id"
    )

    def __init__(
        self,
        manager: DatabaseManager = db_manager,
        cache: Optional[Cache] = None,
    ) -> None:
        self._manager = manager
        self._cache = cache

    def _account_sync(self, channel: Channel, account_id: str) -> Optional[ChannelAccount]:
        with self._manager.db_session() as db:
            row = db.execute(
                self.ACCOUNT_QUERY, {"channel": channel.value, "account_id": account_id}
            ).first()
        if row is None:
            return None
        return ChannelAccount(
            tenant_id=str(row.tenant_id), default_language=row.default_language
        )

    def _policy_sync(self, tenant_id: str) -> Optional[TenantAIPolicy]:
        with self._manager.db_session() as db:
            row = db.execute(self.POLICY_QUERY, {"tenant_id": tenant_id}).first()
        return policy_from_row(row) if row is not None else None

    async def resolve_account(
        self, channel: Channel, account_id: str
    ) -> Optional[ChannelAccount]:
        try:
            return await asyncio.to_thread(self._account_sync, channel, account_id)
        except SQLAlchemyError as e:
            logger.warning(
                "Channel account lookup failed for %s/%s: %s", channel.value, account_id, e
            )
            return None

    async def get_policy(self, tenant_id: str) -> Optional[TenantAIPolicy]:
        if self._cache is not None:
            cached = await self._cache.get(tenant_key(tenant_id))
            if cached is not None:
                return TenantAIPolicy.model_validate(cached)
        try:
            policy = await asyncio.to_thread(self._policy_sync, tenant_id)
        except SQLAlchemyError as e:
            logger.warning("Tenant policy lookup failed for %s: %s", tenant_id, e)
            return None
        except ValidationError as e:
            logger.warning("Invalid ai_config for tenant %s: %s", tenant_id, e)
            return None
        if policy is not None and self._cache is not None:
            await self._cache.set(
                tenant_key(tenant_id), policy.model_dump(), TENANT_TTL_SECONDS
            )
        return policy

    async def invalidate_policy(self, tenant_id: str) -> None:
        if self._cache is not None:
            await self._cache.delete(tenant_key(tenant_id))
