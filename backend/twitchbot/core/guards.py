"""Gate for built-in (component) commands: per-channel disable and access override."""

from __future__ import annotations

import logging

from shared.models.chat_command import AccessLevel

from .access import meets_access_level
from .channel_state import ChannelStateTable

LOGGER = logging.getLogger("CommandGuard")


def allow_builtin(
    states: ChannelStateTable,
    channel: str,
    command_name: str,
    user_level: AccessLevel,
) -> bool:
    """Check a built-in command against the channel's disabled set and overrides.

    Built-ins carry their own role checks; an override here can only add a
    requirement on top of those.
    """
    if states.is_disabled(channel, command_name):
        LOGGER.debug(f"[BLOCK] Built-in !{command_name} disabled in {channel}")
        return False

    required = states.access_override(channel, command_name)
    if required is not None and not meets_access_level(user_level, required):
        LOGGER.debug(f"[BLOCK] Built-in !{command_name} needs {required.name} in {channel}")
        return False

    return True
