"""
Access-token cache for platforms that issue short-lived tokens (WeChat).

Entries are keyed by account id and carry an absolute expiry. A token is
refreshed once it is within `refresh_buffer_seconds` of expiring.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

TokenFetcher = Callable[[], Awaitable[tuple[str, int]]]

DEFAULT_REFRESH_BUFFER_SECONDS = 300


@dataclass(frozen=True)
class CachedToken:
    token: str
    expires_at: float


class AccessTokenCache:
    def __init__(
        self,
        refresh_buffer_seconds: int = DEFAULT_REFRESH_BUFFER_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._buffer = refresh_buffer_seconds
        self._clock = clock
        self._entries: Dict[str, CachedToken] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def peek(self, key: str) -> Optional[str]:
        """Return the cached token if still fresh, without refreshing."""
        entry = self._entries.get(key)
        if entry is None or entry.expires_at - self._buffer <= self._clock():
            return None
        return entry.token

    async def get_or_refresh(self, key: str, fetch: TokenFetcher) -> str:
        """
        Return a fresh token for `key`, calling `fetch` when missing or stale.

        `fetch` returns `(token, expires_in_seconds)`. Concurrent refreshes for
        the same key are serialized so only one fetch happens.
        """
        token = self.peek(key)
        if token is not None:
            return token
        async with self._lock_for(key):
            token = self.peek(key)
            if token is not None:
                return token
            new_token, expires_in = await fetch()
            self._entries[key] = CachedToken(
                token=new_token, expires_at=self._clock() + expires_in
            )
            return new_token

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)
