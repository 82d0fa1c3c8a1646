"""Shared repository layer for all community bot services."""

from .channel import ChannelRepository
from .chat_command import ChatCommandRepository
from .regular import RegularRepository

__all__ = [
    "ChannelRepository",
    "ChatCommandRepository",
    "RegularRepository",
]
