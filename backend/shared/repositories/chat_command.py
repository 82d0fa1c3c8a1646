"""Repository for chat_commands and command_overrides tables."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import asyncpg

from shared.models.chat_command import AccessLevel, ChatCommand, ResponseType

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COLUMNS = (
    "c.id, c.channel_id, c.name, c.aliases, c.regex, c.response, c.response_type, "
    "c.enabled, c.access_level, c.global_cooldown, c.user_cooldown, c.use_count, "
    "c.limit_to_user, c.created_at, c.updated_at"
)


async def _retry_on_db_error(func: Callable[[], Awaitable[T]], max_retries: int = 2) -> T:
    """Retry helper for write operations."""
    for attempt in range(1, max_retries + 1):
        try:
            return await func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if attempt >= max_retries:
                logger.exception(f"DB operation failed after {max_retries} attempts")
                raise
            delay = 0.5 * attempt
            logger.warning(
                f"DB operation attempt {attempt}/{max_retries} failed: {type(e).__name__}, "
                f"retrying in {delay}s..."
            )
            await asyncio.sleep(delay)
    raise RuntimeError("unreachable")


def _row_to_command(row: Any) -> ChatCommand:
    data = dict(row)
    level = AccessLevel.parse(data.get("access_level"))
    if level is None:
        logger.warning(
            f"Unknown access level {data.get('access_level')!r} on command "
            f"'{data['name']}', using EVERYONE"
        )
        level = AccessLevel.EVERYONE
    try:
        response_type = ResponseType(str(data.get("response_type") or "say").lower())
    except ValueError:
        response_type = ResponseType.SAY
    return ChatCommand(
        id=data["id"],
        name=data["name"],
        response=data["response"],
        aliases=tuple(data.get("aliases") or ()),
        regex=data.get("regex") or None,
        response_type=response_type,
        enabled=data["enabled"],
        access_level=level,
        global_cooldown=max(0, data.get("global_cooldown") or 0),
        user_cooldown=max(0, data.get("user_cooldown") or 0),
        limit_to_user=(data.get("limit_to_user") or "").lower() or None,
        channel_id=data.get("channel_id"),
        channel_name=data.get("channel_name"),
        use_count=data.get("use_count") or 0,
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
    )


class ChatCommandRepository:
    """Pure SQL operations for chat_commands."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def list_enabled(self) -> list[ChatCommand]:
        """All enabled commands, global and per-channel, in load order (id)."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS}, ch.channel_name "
                "FROM chat_commands c "
                "LEFT JOIN channels ch ON ch.channel_id = c.channel_id "
                "WHERE c.enabled = TRUE "
                "ORDER BY c.id"
            )
            return [_row_to_command(row) for row in rows]

    async def get(self, channel_id: str | None, name: str) -> ChatCommand | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS}, ch.channel_name "
                "FROM chat_commands c "
                "LEFT JOIN channels ch ON ch.channel_id = c.channel_id "
                "WHERE c.channel_id IS NOT DISTINCT FROM $1 AND c.name = $2",
                channel_id,
                name.lower(),
            )
            return _row_to_command(row) if row else None

    async def upsert(
        self,
        channel_id: str,
        name: str,
        *,
        response: str | None = None,
        aliases: list[str] | None = None,
        regex: str | None = None,
        response_type: ResponseType | None = None,
        enabled: bool | None = None,
        access_level: AccessLevel | None = None,
        global_cooldown: int | None = None,
        user_cooldown: int | None = None,
        limit_to_user: str | None = None,
    ) -> ChatCommand:
        """Insert or update a channel command. ``None`` keeps the stored value.

        ``limit_to_user=""`` clears the user restriction.
        """

        async def _query() -> ChatCommand:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO chat_commands
                        (channel_id, name, response, aliases, regex, response_type,
                         enabled, access_level, global_cooldown, user_cooldown, limit_to_user)
                    VALUES ($1, $2, COALESCE($3, ''), COALESCE($4, '{}'::TEXT[]), $5,
                            COALESCE($6, 'say'), COALESCE($7, TRUE),
                            COALESCE($8, 'EVERYONE'), COALESCE($9, 0), COALESCE($10, 0),
                            NULLIF($11, ''))
                    ON CONFLICT (channel_id, name) DO UPDATE SET
                        response        = COALESCE($3, chat_commands.response),
                        aliases         = COALESCE($4, chat_commands.aliases),
                        regex           = COALESCE($5, chat_commands.regex),
                        response_type   = COALESCE($6, chat_commands.response_type),
                        enabled         = COALESCE($7, chat_commands.enabled),
                        access_level    = COALESCE($8, chat_commands.access_level),
                        global_cooldown = COALESCE($9, chat_commands.global_cooldown),
                        user_cooldown   = COALESCE($10, chat_commands.user_cooldown),
                        limit_to_user   = CASE WHEN $11::TEXT IS NULL
                                               THEN chat_commands.limit_to_user
                                               ELSE NULLIF($11, '') END,
                        updated_at      = NOW()
                    RETURNING id
                    """,
                    channel_id,
                    name.lower(),
                    response,
                    [a.lower() for a in aliases] if aliases is not None else None,
                    regex,
                    response_type.value if response_type else None,
                    enabled,
                    access_level.name if access_level is not None else None,
                    global_cooldown,
                    user_cooldown,
                    limit_to_user.lower() if limit_to_user is not None else None,
                )
                command_id = row["id"]
            result = await self.get(channel_id, name)
            if result is None:
                raise LookupError(f"chat command {command_id} vanished after upsert")
            return result

        return await _retry_on_db_error(_query)

    async def delete(self, channel_id: str, name: str) -> bool:
        """Delete a channel command. Returns True if deleted."""

        async def _query() -> bool:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    "DELETE FROM chat_commands WHERE channel_id = $1 AND name = $2",
                    channel_id,
                    name.lower(),
                )
                return result == "DELETE 1"

        return await _retry_on_db_error(_query)

    async def increment_use_count(self, command_id: int) -> int:
        """Bump and return the stored use count of a command."""
        async with self.pool.acquire() as conn:
            value = await conn.fetchval(
                "UPDATE chat_commands SET use_count = use_count + 1 "
                "WHERE id = $1 RETURNING use_count",
                command_id,
            )
            if value is None:
                raise LookupError(f"chat command {command_id} not found")
            return int(value)
