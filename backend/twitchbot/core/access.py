"""Access level resolution for chatters."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from shared.models.chat_command import AccessLevel

LOGGER = logging.getLogger("AccessControl")


class RegularSource(Protocol):
    async def list_user_ids(self) -> frozenset[str]: ...


def meets_access_level(user_level: AccessLevel, required: AccessLevel) -> bool:
    return user_level >= required


class AccessControl:
    """Maps a chatter's badges (plus the regulars list) to an AccessLevel."""

    def __init__(self, source: RegularSource | None = None) -> None:
        self._source = source
        self._regulars: frozenset[str] = frozenset()

    async def load(self) -> int:
        if self._source is None:
            return 0
        self._regulars = frozenset(await self._source.list_user_ids())
        LOGGER.info(f"Loaded {len(self._regulars)} regulars")
        return len(self._regulars)

    def is_regular(self, user_id: str) -> bool:
        return user_id in self._regulars

    def level_for(self, chatter: Any) -> AccessLevel:
        """Highest tier the chatter qualifies for.

        ``chatter`` is a twitchio ``Chatter`` or anything with the same
        badge flags (``broadcaster``, ``moderator``, ``vip``, ...).
        """
        if getattr(chatter, "broadcaster", False):
            return AccessLevel.BROADCASTER
        if getattr(chatter, "lead_moderator", False):
            return AccessLevel.LEAD_MODERATOR
        if getattr(chatter, "moderator", False):
            return AccessLevel.MODERATOR
        if getattr(chatter, "vip", False):
            return AccessLevel.VIP
        if self.is_regular(str(getattr(chatter, "id", ""))):
            return AccessLevel.REGULAR
        if getattr(chatter, "subscriber", False) or getattr(chatter, "founder", False):
            return AccessLevel.SUBSCRIBER
        return AccessLevel.EVERYONE
