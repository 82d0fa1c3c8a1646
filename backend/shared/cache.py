"""Read-through TTL cache with last-known-good fallback.

Repositories wrap their hot read queries with :func:`cached`. A fresh value
is served from a ``cachetools.TTLCache``; when the database is unreachable the
decorator falls back to the last value it ever fetched for the same key, so
the bot keeps answering chat during short outages.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache

logger = logging.getLogger(__name__)

_MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class AsyncTTLCache:
    """TTL cache plus a bounded LRU store of last-known-good values."""

    def __init__(self, maxsize: int = 128, ttl: float = 60.0):
        self._maxsize = maxsize
        self._fresh: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._last_good: OrderedDict[str, Any] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, key: str) -> Any:
        return self._fresh.get(key, _MISSING)

    def set(self, key: str, value: Any) -> None:
        self._fresh[key] = value
        self._last_good[key] = value
        self._last_good.move_to_end(key)
        while len(self._last_good) > self._maxsize:
            self._last_good.popitem(last=False)

    def get_stale(self, key: str) -> Any:
        return self._last_good.get(key, _MISSING)

    def invalidate(self, key: str) -> None:
        """Drop the fresh value; the last-known-good copy is kept."""
        self._fresh.pop(key, None)

    def clear(self) -> None:
        self._fresh.clear()

    @property
    def size(self) -> int:
        return len(self._fresh)


def is_missing(value: Any) -> bool:
    return value is _MISSING


def cached(cache: AsyncTTLCache, key_func: Callable[..., str], *, retry: int = 3):
    """Cache the result of an async read, retrying and falling back on failure.

    ``key_func`` receives the decorated function's arguments and returns the
    cache key. After ``retry`` failed attempts the last-known-good value is
    returned with a warning; with no such value the last error is re-raised.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            key = key_func(*args, **kwargs)

            value = cache.get(key)
            if value is not _MISSING:
                return value

            async with cache.lock_for(key):
                value = cache.get(key)
                if value is not _MISSING:
                    return value

                last_exc: Exception | None = None
                for attempt in range(1, retry + 1):
                    try:
                        value = await func(*args, **kwargs)
                    except asyncio.CancelledError:
                        raise
                    except Exception as exc:
                        last_exc = exc
                        if attempt < retry:
                            delay = 1.0 * attempt
                            logger.warning(
                                "Read %s failed (%d/%d): %s, retrying in %.1fs",
                                key,
                                attempt,
                                retry,
                                type(exc).__name__,
                                delay,
                            )
                            await asyncio.sleep(delay)
                        continue
                    cache.set(key, value)
                    return value

                stale = cache.get_stale(key)
                if stale is not _MISSING:
                    logger.warning("Serving last-known-good %s (%s)", key, type(last_exc).__name__)
                    return stale
                assert last_exc is not None
                raise last_exc

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
