"""Data models for channels and tokens tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Channel:
    """Twitch channel the bot has joined."""

    channel_id: str
    channel_name: str
    enabled: bool = True
    muted: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Token:
    """OAuth token record."""

    user_id: str
    token: str
    refresh: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
