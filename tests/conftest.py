from __future__ import annotations

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import pytest

from shared.models.chat_command import (
    AccessLevel,
    ChannelCommandState,
    ChatCommand,
    CommandOverride,
    ResponseType,
)
from twitchbot.core.channel_state import ChannelStateTable
from twitchbot.core.command_cache import CommandCache
from twitchbot.core.cooldowns import CooldownLedger
from twitchbot.core.executor import CommandExecutor


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCommandSource:
    def __init__(self, commands: list[ChatCommand] | None = None) -> None:
        self.commands = list(commands or [])
        self.error: Exception | None = None
        self.calls = 0

    async def list_enabled(self) -> list[ChatCommand]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.commands)


class FakeStateSource:
    def __init__(self, states: list[ChannelCommandState] | None = None) -> None:
        self.states = {s.channel_id: s for s in states or []}

    async def list_command_states(self) -> list[ChannelCommandState]:
        return list(self.states.values())

    async def get_command_state(self, channel_id: str) -> ChannelCommandState | None:
        return self.states.get(channel_id)


@dataclass
class SentMessage:
    channel: str
    text: str
    reply_to: Any = None


@dataclass
class RecordingSender:
    sent: list[SentMessage] = field(default_factory=list)
    error: Exception | None = None

    async def __call__(self, channel: str, text: str, *, reply_to: Any = None) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(SentMessage(channel, text, reply_to))

    @property
    def texts(self) -> list[str]:
        return [m.text for m in self.sent]


_next_id = 0


def make_command(name: str, response: str = "ok", **kwargs: Any) -> ChatCommand:
    global _next_id
    _next_id += 1
    kwargs.setdefault("id", _next_id)
    aliases = kwargs.pop("aliases", ())
    return ChatCommand(name=name, response=response, aliases=tuple(aliases), **kwargs)


def make_state(
    channel_id: str,
    channel_name: str,
    *,
    disabled: list[str] | None = None,
    overrides: dict[str, str] | None = None,
    enabled: bool = True,
    muted: bool = False,
) -> ChannelCommandState:
    return ChannelCommandState(
        channel_id=channel_id,
        channel_name=channel_name,
        enabled=enabled,
        muted=muted,
        disabled_commands=list(disabled or []),
        overrides=[
            CommandOverride(channel_id, name, level) for name, level in (overrides or {}).items()
        ],
    )


def make_chatter(user_id: str = "1", name: str = "alice", **flags: bool) -> SimpleNamespace:
    badges = {
        "broadcaster": False,
        "lead_moderator": False,
        "moderator": False,
        "vip": False,
        "subscriber": False,
        "founder": False,
    }
    badges.update(flags)
    return SimpleNamespace(id=user_id, name=name, display_name=name.capitalize(), **badges)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock: FakeClock) -> CooldownLedger:
    return CooldownLedger(clock=clock)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@dataclass
class Pipeline:
    source: FakeCommandSource
    states: FakeStateSource
    cache: CommandCache
    table: ChannelStateTable
    ledger: CooldownLedger
    sender: RecordingSender
    executor: CommandExecutor

    async def load(self) -> None:
        await self.cache.load()
        await self.table.load()


@pytest.fixture
def pipeline(ledger: CooldownLedger, sender: RecordingSender) -> Pipeline:
    source = FakeCommandSource()
    states = FakeStateSource()
    cache = CommandCache(source)
    table = ChannelStateTable(states)
    executor = CommandExecutor(
        cache,
        table,
        ledger,
        sender,
        prefix="!",
        cooldown_bypass=AccessLevel.MODERATOR,
        rng=lambda: 0.0,
    )
    return Pipeline(source, states, cache, table, ledger, sender, executor)
