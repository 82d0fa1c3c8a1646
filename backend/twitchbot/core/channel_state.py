"""Per-channel command gating: disabled commands, access overrides, mute.

This is independent of a command's own ``enabled`` flag and access level:
a channel can switch off a command that is enabled globally, or demand a
different access level for it. Unknown channels are never gated.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Protocol

from shared.models.chat_command import AccessLevel, ChannelCommandState

from .command_cache import channel_key

LOGGER = logging.getLogger("ChannelState")


class ChannelStateSource(Protocol):
    async def list_command_states(self) -> list[ChannelCommandState]: ...

    async def get_command_state(self, channel_id: str) -> ChannelCommandState | None: ...


@dataclass(frozen=True)
class ChannelGate:
    channel_id: str
    disabled: frozenset[str] = frozenset()
    overrides: Mapping[str, AccessLevel] = field(default_factory=dict)
    muted: bool = False

    @classmethod
    def from_state(cls, state: ChannelCommandState) -> ChannelGate:
        overrides: dict[str, AccessLevel] = {}
        for o in state.overrides:
            level = AccessLevel.parse(o.access_level)
            if level is None:
                LOGGER.warning(
                    f"Skipping override for '{o.command_name}' in {state.channel_name}: "
                    f"unknown access level {o.access_level!r}"
                )
                continue
            overrides[o.command_name.lower()] = level
        return cls(
            channel_id=state.channel_id,
            disabled=frozenset(name.lower() for name in state.disabled_commands),
            overrides=overrides,
            muted=state.muted,
        )


class ChannelStateTable:
    """Channel name -> gate. Each mutation publishes a new mapping."""

    def __init__(self, source: ChannelStateSource) -> None:
        self._source = source
        self._gates: Mapping[str, ChannelGate] = {}

    async def load(self) -> int:
        """Rebuild gates for all enabled channels. Returns the channel count."""
        states = await self._source.list_command_states()
        gates = {
            channel_key(state.channel_name): ChannelGate.from_state(state)
            for state in states
            if state.enabled
        }
        self._gates = gates
        LOGGER.info(f"Loaded disabled commands for {len(gates)} channels")
        return len(gates)

    async def reload_for_channel(self, channel_id: str) -> bool:
        """Refresh one channel's gate without touching any other channel.

        Returns False when the channel no longer exists.
        """
        state = await self._source.get_command_state(channel_id)
        if state is None:
            LOGGER.debug(f"reload_for_channel: no channel {channel_id}")
            return False

        gates = {k: v for k, v in self._gates.items() if v.channel_id != channel_id}
        if state.enabled:
            gates[channel_key(state.channel_name)] = ChannelGate.from_state(state)
        self._gates = gates
        LOGGER.debug(f"Reloaded command state for {state.channel_name}")
        return True

    def _gate(self, channel: str) -> ChannelGate | None:
        return self._gates.get(channel_key(channel))

    def is_disabled(self, channel: str, command_name: str) -> bool:
        gate = self._gate(channel)
        return gate is not None and command_name.lower() in gate.disabled

    def access_override(self, channel: str, command_name: str) -> AccessLevel | None:
        gate = self._gate(channel)
        if gate is None:
            return None
        return gate.overrides.get(command_name.lower())

    def is_muted(self, channel: str) -> bool:
        gate = self._gate(channel)
        return gate is not None and gate.muted

    def set_muted(self, channel: str, muted: bool, *, channel_id: str = "") -> None:
        """Flip the in-memory mute flag; persisting it is the caller's job."""
        key = channel_key(channel)
        gate = self._gates.get(key) or ChannelGate(channel_id=channel_id)
        self._gates = {**self._gates, key: replace(gate, muted=muted)}
