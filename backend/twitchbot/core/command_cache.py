"""In-memory index of chat commands, per channel with a global fallback.

Commands are looked up either by name/alias (prefix commands) or by matching
a compiled pattern against the whole message (regex commands). A reload
builds a complete new snapshot off to the side and publishes it with a
single assignment, so a lookup sees either the old data or the new data,
never a mix.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import NamedTuple, Protocol

from shared.models.chat_command import ChatCommand

LOGGER = logging.getLogger("CommandCache")


class CommandSource(Protocol):
    async def list_enabled(self) -> list[ChatCommand]: ...


class RegexCommand(NamedTuple):
    command: ChatCommand
    pattern: re.Pattern[str]


def channel_key(channel: str) -> str:
    """Normalise ``#Name`` / ``name`` to the lookup key ``name``."""
    return channel.removeprefix("#").lower()


def compile_trigger(command: ChatCommand) -> re.Pattern[str] | None:
    """Compile a command's regex trigger, or log and return None if invalid."""
    if not command.regex:
        return None
    try:
        return re.compile(command.regex, re.IGNORECASE)
    except re.error as e:
        LOGGER.warning(f"Invalid regex for command '{command.name}': {command.regex!r} ({e})")
        return None


@dataclass(frozen=True)
class CommandSnapshot:
    """Immutable view of every loaded command."""

    channel_prefix: Mapping[str, Mapping[str, ChatCommand]] = field(default_factory=dict)
    channel_regex: Mapping[str, tuple[RegexCommand, ...]] = field(default_factory=dict)
    global_prefix: Mapping[str, ChatCommand] = field(default_factory=dict)
    global_regex: tuple[RegexCommand, ...] = ()

    @classmethod
    def build(cls, commands: Iterable[ChatCommand]) -> CommandSnapshot:
        channel_prefix: dict[str, dict[str, ChatCommand]] = {}
        channel_regex: dict[str, list[RegexCommand]] = {}
        global_prefix: dict[str, ChatCommand] = {}
        global_regex: list[RegexCommand] = []

        for cmd in commands:
            if not cmd.enabled:
                continue
            if cmd.channel_id is not None and not cmd.channel_name:
                LOGGER.warning(f"Command '{cmd.name}' belongs to unknown channel {cmd.channel_id}")
                continue
            scope = channel_key(cmd.channel_name) if cmd.channel_name else None

            if cmd.regex:
                pattern = compile_trigger(cmd)
                if pattern is None:
                    continue
                entry = RegexCommand(cmd, pattern)
                if scope:
                    channel_regex.setdefault(scope, []).append(entry)
                else:
                    global_regex.append(entry)
                continue

            if scope:
                prefix_map = channel_prefix.setdefault(scope, {})
            else:
                prefix_map = global_prefix
            prefix_map[cmd.name.lower()] = cmd
            for alias in cmd.aliases:
                if alias:
                    prefix_map[alias.lower()] = cmd

        return cls(
            channel_prefix=channel_prefix,
            channel_regex={k: tuple(v) for k, v in channel_regex.items()},
            global_prefix=global_prefix,
            global_regex=tuple(global_regex),
        )

    @property
    def channel_count(self) -> int:
        return len(set(self.channel_prefix) | set(self.channel_regex))


class CommandCache:
    """Resolves trigger tokens and regex candidates for a channel."""

    def __init__(self, source: CommandSource) -> None:
        self._source = source
        self._snapshot = CommandSnapshot()

    @property
    def snapshot(self) -> CommandSnapshot:
        return self._snapshot

    async def load(self) -> int:
        """Fetch all enabled commands and publish a fresh snapshot.

        Raises whatever the source raises; the previous snapshot then stays
        in place. Returns the number of commands fetched.
        """
        commands = await self._source.list_enabled()
        snapshot = CommandSnapshot.build(commands)
        self._snapshot = snapshot
        LOGGER.info(f"Loaded {len(commands)} commands across {snapshot.channel_count} channels")
        return len(commands)

    async def reload(self) -> int:
        return await self.load()

    def resolve(self, token: str, channel: str | None = None) -> ChatCommand | None:
        """Find a prefix command by name or alias, channel scope first."""
        snapshot = self._snapshot
        key = token.lower()
        if channel:
            found = snapshot.channel_prefix.get(channel_key(channel), {}).get(key)
            if found is not None:
                return found
        return snapshot.global_prefix.get(key)

    def regex_candidates(self, channel: str | None = None) -> list[RegexCommand]:
        """Channel regex commands followed by global ones, each in load order."""
        snapshot = self._snapshot
        result: list[RegexCommand] = []
        if channel:
            result.extend(snapshot.channel_regex.get(channel_key(channel), ()))
        result.extend(snapshot.global_regex)
        return result
