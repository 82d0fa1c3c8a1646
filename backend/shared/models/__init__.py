"""Shared data models for all community bot services."""

from .channel import Channel, Token
from .chat_command import (
    AccessLevel,
    ChannelCommandState,
    ChatCommand,
    CommandOverride,
    ResponseType,
)

__all__ = [
    "AccessLevel",
    "Channel",
    "ChannelCommandState",
    "ChatCommand",
    "CommandOverride",
    "ResponseType",
    "Token",
]
