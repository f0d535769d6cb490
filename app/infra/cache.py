"""
Key/value cache used for translations, tenant policies and agent suggestions.

Both implementations are safe to share between concurrent pipeline runs.
Duplicate writes of the same value are harmless, so no read-modify-write
atomicity is offered.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Optional, Protocol

import redis.asyncio as redis

from app.config import get_settings
from app.infra.logging_config import get_logger

logger = get_logger("cache")

TRANSLATION_TTL_SECONDS = 86400
TENANT_TTL_SECONDS = 3600
SUGGESTION_TTL_SECONDS = 1800


def translation_key(digest: str) -> str:
    return f"translation:{digest}"


def tenant_key(tenant_id: str) -> str:
    return f"tenant:{tenant_id}"


def suggestion_key(digest: str) -> str:
    return f"ai:response:{digest}"


class Cache(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryCache:
    """Process-local TTL cache guarded by an asyncio lock."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        async with self._lock:
            self._entries[key] = (time.monotonic() + ttl, value)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)


class RedisCache:
    """
    Redis-backed cache storing JSON values under a namespace prefix.

    Redis errors are logged and reported as a miss so a cache outage never
    fails the caller.
    """

    def __init__(self, client: redis.Redis, namespace: str = "cs") -> None:
        self._client = client
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self._client.set(
                self._key(key), json.dumps(value, ensure_ascii=False), ex=ttl
            )
        except redis.RedisError as e:
            logger.warning("Cache set failed for %s: %s", key, e)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except redis.RedisError as e:
            logger.warning("Cache delete failed for %s: %s", key, e)


def build_cache_from_env() -> Cache:
    settings = get_settings()
    if settings.is_test:
        return InMemoryCache()
    client = redis.from_url(settings.redis_url, decode_responses=True)
    return RedisCache(client, namespace=settings.cache_namespace)
