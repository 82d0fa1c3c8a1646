"""Data models for chat_commands and command_overrides tables."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum


class AccessLevel(IntEnum):
    """Ordered permission tier used for command gating."""

    EVERYONE = 0
    SUBSCRIBER = 1
    REGULAR = 2
    VIP = 3
    MODERATOR = 4
    LEAD_MODERATOR = 5
    BROADCASTER = 6

    @classmethod
    def parse(cls, value: str | None) -> AccessLevel | None:
        """Parse a DB value or chat shorthand. Returns None if unrecognised."""
        if value is None:
            return None
        key = value.strip().lower().replace("-", "_")
        return _ACCESS_ALIASES.get(key)


_ACCESS_ALIASES: dict[str, AccessLevel] = {
    "everyone": AccessLevel.EVERYONE,
    "all": AccessLevel.EVERYONE,
    "subscriber": AccessLevel.SUBSCRIBER,
    "sub": AccessLevel.SUBSCRIBER,
    "regular": AccessLevel.REGULAR,
    "reg": AccessLevel.REGULAR,
    "vip": AccessLevel.VIP,
    "moderator": AccessLevel.MODERATOR,
    "mod": AccessLevel.MODERATOR,
    "lead_moderator": AccessLevel.LEAD_MODERATOR,
    "lead_mod": AccessLevel.LEAD_MODERATOR,
    "broadcaster": AccessLevel.BROADCASTER,
    "owner": AccessLevel.BROADCASTER,
}


class ResponseType(str, Enum):
    SAY = "say"
    MENTION = "mention"
    REPLY = "reply"


@dataclass(frozen=True)
class ChatCommand:
    """Chat command definition record.

    ``channel_id`` is None for global commands, which act as the fallback for
    every channel. ``regex`` and name/alias triggering are mutually exclusive:
    a command with a regex is only ever matched against whole messages.
    """

    id: int | None
    name: str
    response: str
    aliases: tuple[str, ...] = ()
    regex: str | None = None
    response_type: ResponseType = ResponseType.SAY
    enabled: bool = True
    access_level: AccessLevel = AccessLevel.EVERYONE
    global_cooldown: int = 0
    user_cooldown: int = 0
    limit_to_user: str | None = None  # lowercase login; only this chatter may run it
    channel_id: str | None = None
    channel_name: str | None = None  # joined from channels
    use_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class CommandOverride:
    """Per-channel access level override for one command name."""

    channel_id: str
    command_name: str
    access_level: str  # raw DB value, validated when loaded into the state table


@dataclass
class ChannelCommandState:
    """Per-channel gating data: disabled command names and access overrides."""

    channel_id: str
    channel_name: str
    enabled: bool = True
    muted: bool = False
    disabled_commands: list[str] = field(default_factory=list)
    overrides: list[CommandOverride] = field(default_factory=list)
