"""Repository for tokens, channels and per-channel command state."""

from __future__ import annotations

import logging

import asyncpg

from shared.cache import AsyncTTLCache, cached
from shared.models.channel import Channel, Token
from shared.models.chat_command import ChannelCommandState, CommandOverride

logger = logging.getLogger(__name__)

_enabled_channels_cache = AsyncTTLCache(maxsize=1, ttl=3600)

_CHANNEL_COLUMNS = "channel_id, channel_name, enabled, muted, created_at, updated_at"


class ChannelRepository:
    """Pure SQL operations for tokens / channels / command_overrides."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    # ==================== Token Operations ====================

    async def list_tokens(self) -> list[Token]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT user_id, token, refresh, created_at, updated_at FROM tokens"
            )
            return [Token(**dict(r)) for r in rows]

    async def upsert_token(self, user_id: str, token: str, refresh: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO tokens (user_id, token, refresh)
                VALUES ($1, $2, $3)
                ON CONFLICT (user_id) DO UPDATE SET
                    token      = EXCLUDED.token,
                    refresh    = EXCLUDED.refresh,
                    updated_at = NOW()
                """,
                user_id,
                token,
                refresh,
            )

    # ==================== Channel Operations ====================

    @cached(cache=_enabled_channels_cache, key_func=lambda self: "enabled_channels")
    async def list_enabled_channels(self) -> list[Channel]:
        """Return all enabled channels."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_CHANNEL_COLUMNS} FROM channels WHERE enabled = TRUE"
            )
            return [Channel(**dict(r)) for r in rows]

    async def upsert_channel(self, channel_id: str, channel_name: str, enabled: bool = True) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO channels (channel_id, channel_name, enabled)
                VALUES ($1, $2, $3)
                ON CONFLICT (channel_id) DO UPDATE SET
                    channel_name = EXCLUDED.channel_name,
                    enabled      = EXCLUDED.enabled,
                    updated_at   = NOW()
                """,
                channel_id,
                channel_name.lower(),
                enabled,
            )
        _enabled_channels_cache.clear()

    async def set_muted(self, channel_id: str, muted: bool) -> bool:
        """Persist the mute flag. Returns False if the channel is unknown."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "UPDATE channels SET muted = $1, updated_at = NOW() WHERE channel_id = $2",
                muted,
                channel_id,
            )
        return result == "UPDATE 1"

    def invalidate_cache(self) -> None:
        _enabled_channels_cache.clear()

    # ==================== Command State ====================

    async def list_command_states(self) -> list[ChannelCommandState]:
        """Disabled commands and access overrides for every enabled channel."""
        async with self.pool.acquire() as conn:
            channels = await conn.fetch(
                "SELECT channel_id, channel_name, enabled, muted, disabled_commands "
                "FROM channels WHERE enabled = TRUE"
            )
            overrides = await conn.fetch(
                "SELECT o.channel_id, o.command_name, o.access_level "
                "FROM command_overrides o "
                "JOIN channels ch ON ch.channel_id = o.channel_id "
                "WHERE ch.enabled = TRUE"
            )

        by_channel: dict[str, list[CommandOverride]] = {}
        for row in overrides:
            by_channel.setdefault(row["channel_id"], []).append(CommandOverride(**dict(row)))

        return [
            ChannelCommandState(
                channel_id=row["channel_id"],
                channel_name=row["channel_name"],
                enabled=row["enabled"],
                muted=row["muted"],
                disabled_commands=list(row["disabled_commands"] or []),
                overrides=by_channel.get(row["channel_id"], []),
            )
            for row in channels
        ]

    async def get_command_state(self, channel_id: str) -> ChannelCommandState | None:
        """Command state for one channel, regardless of its enabled flag."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT channel_id, channel_name, enabled, muted, disabled_commands "
                "FROM channels WHERE channel_id = $1",
                channel_id,
            )
            if not row:
                return None
            overrides = await conn.fetch(
                "SELECT channel_id, command_name, access_level "
                "FROM command_overrides WHERE channel_id = $1",
                channel_id,
            )

        return ChannelCommandState(
            channel_id=row["channel_id"],
            channel_name=row["channel_name"],
            enabled=row["enabled"],
            muted=row["muted"],
            disabled_commands=list(row["disabled_commands"] or []),
            overrides=[CommandOverride(**dict(o)) for o in overrides],
        )
