"""Global and per-user cooldown tracking for chat commands.

Each command has two independent windows: a global one shared by every
chatter, and one per (command, user). Timestamps live in memory only and
are lost on restart.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from typing import NamedTuple

from cachetools import TLRUCache

LOGGER = logging.getLogger("Cooldowns")


class CooldownStatus(NamedTuple):
    on_cooldown: bool
    remaining_seconds: int


NOT_ON_COOLDOWN = CooldownStatus(False, 0)


class _Stamp(NamedTuple):
    used_at: float
    window: float


class CooldownLedger:
    """Last-use timestamps keyed by command and by (command, user).

    Entries expire once both their own window and ``retention`` seconds have
    passed since the use, so the ledger does not grow with every chatter ever
    seen. Expiry never shortens an active window.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        retention: float = 3600.0,
        maxsize: int = 100_000,
    ) -> None:
        self._clock = clock
        self._retention = retention
        self._global: TLRUCache = TLRUCache(maxsize=maxsize, ttu=self._expires_at, timer=clock)
        self._per_user: TLRUCache = TLRUCache(maxsize=maxsize, ttu=self._expires_at, timer=clock)

    def _expires_at(self, _key: object, stamp: _Stamp, now: float) -> float:
        return now + max(stamp.window, self._retention)

    @staticmethod
    def _remaining(stamp: _Stamp | None, seconds: float, now: float) -> int:
        if stamp is None:
            return 0
        elapsed = max(0.0, now - stamp.used_at)
        return max(0, math.ceil(seconds - elapsed))

    def is_on_cooldown(
        self,
        command: str,
        user_id: str,
        global_seconds: float,
        user_seconds: float,
    ) -> CooldownStatus:
        """Report whether ``command`` may run for ``user_id`` right now.

        A duration of 0 disables that axis. When both windows are active the
        larger remaining time is reported.
        """
        if global_seconds <= 0 and user_seconds <= 0:
            return NOT_ON_COOLDOWN

        now = self._clock()
        remaining = 0
        if global_seconds > 0:
            remaining = self._remaining(self._global.get(command), global_seconds, now)
        if user_seconds > 0:
            remaining = max(
                remaining,
                self._remaining(self._per_user.get((command, user_id)), user_seconds, now),
            )
        return CooldownStatus(remaining > 0, remaining)

    def record_usage(
        self,
        command: str,
        user_id: str,
        global_seconds: float,
        user_seconds: float,
    ) -> None:
        """Stamp the current time on every axis with a non-zero duration."""
        now = self._clock()
        if global_seconds > 0:
            self._stamp(self._global, command, now, global_seconds)
        if user_seconds > 0:
            self._stamp(self._per_user, (command, user_id), now, user_seconds)

    @staticmethod
    def _stamp(store: TLRUCache, key: object, now: float, window: float) -> None:
        previous: _Stamp | None = store.get(key)
        # A clock step backwards must not move a window earlier.
        if previous is not None and previous.used_at > now:
            now = previous.used_at
        store[key] = _Stamp(now, window)

    def clear(self) -> None:
        self._global.clear()
        self._per_user.clear()
