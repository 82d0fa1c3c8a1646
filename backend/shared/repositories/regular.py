"""Repository for regulars table."""

from __future__ import annotations

import asyncpg

from shared.cache import AsyncTTLCache, cached

_regulars_cache = AsyncTTLCache(maxsize=1, ttl=600)


class RegularRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    @cached(cache=_regulars_cache, key_func=lambda self: "regulars")
    async def list_user_ids(self) -> frozenset[str]:
        """Twitch user ids of every regular (cached, stale fallback on DB errors)."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT user_id FROM regulars")
            return frozenset(row["user_id"] for row in rows)

    def invalidate_cache(self) -> None:
        """Drop the cached id set (called by the config_change handler)."""
        _regulars_cache.invalidate("regulars")
