"""Tests for AccessTokenCache."""

import asyncio

import pytest

from app.core.token_cache import AccessTokenCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_token_reused_until_refresh_buffer():
    clock = FakeClock()
    cache = AccessTokenCache(refresh_buffer_seconds=300, clock=clock)
    issued = []

    async def fetch():
        issued.append(f"token-{len(issued)}")
        return issued[-1], 7200

    assert await cache.get_or_refresh("app", fetch) == "token-0"
    clock.now += 6800
    assert await cache.get_or_refresh("app", fetch) == "token-0"
    clock.now += 200
    assert cache.peek("app") is None
    assert await cache.get_or_refresh("app", fetch) == "token-1"


@pytest.mark.asyncio
async def test_concurrent_refreshes_fetch_once():
    cache = AccessTokenCache()
    calls = 0

    async def fetch():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0)
        return "shared", 7200

    tokens = await asyncio.gather(*(cache.get_or_refresh("app", fetch) for _ in range(5)))
    assert tokens == ["shared"] * 5
    assert calls == 1


@pytest.mark.asyncio
async def test_invalidate_forces_refetch():
    cache = AccessTokenCache()

    async def fetch():
        return "t", 7200

    await cache.get_or_refresh("app", fetch)
    cache.invalidate("app")
    assert cache.peek("app") is None
