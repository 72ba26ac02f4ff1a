"""In-process TTL cache with stale fallback for slow-changing lookups.

Backed by cachetools.TTLCache; each repository owns its cache instances and
nothing is shared across processes. Only data that tolerates staleness
(customer display names) goes through here. Queue rows and the settings
counter are always read from the database.

When the database is unavailable, reads fall back to the last value seen
(even past its TTL) so a flaky lookup does not fail the caller.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Distinguishes "not cached" from a cached None
_MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class AsyncTTLCache:
    """Async-aware TTL cache with a bounded last-known-good store.

    ``_cache`` holds fresh values governed by *ttl*; ``_stale`` is an LRU of
    the most recent value per key, consulted only after the source failed.
    """

    def __init__(self, maxsize: int = 128, ttl: float = 60.0):
        self._maxsize = maxsize
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._stale: OrderedDict[str, Any] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            if len(self._locks) >= self._maxsize * 2:
                for k in [k for k in self._locks if k not in self._stale]:
                    del self._locks[k]
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def get(self, key: str) -> Any:
        """Return the fresh value or ``_MISSING``."""
        return self._cache.get(key, _MISSING)

    def set(self, key: str, value: Any) -> None:
        self._cache[key] = value
        self._stale[key] = value
        self._stale.move_to_end(key)
        while len(self._stale) > self._maxsize:
            self._stale.popitem(last=False)

    def invalidate(self, key: str) -> None:
        """Drop the fresh value; the stale copy is kept."""
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()
        self._stale.clear()

    def get_stale(self, key: str) -> Any:
        value = self._stale.get(key, _MISSING)
        if value is not _MISSING:
            self._stale.move_to_end(key)
        return value


def cached(
    cache: AsyncTTLCache,
    key_func: Callable[..., str],
    *,
    retry: int = 3,
):
    """Cache an async lookup, retrying and then serving stale data on failure.

    Parameters
    ----------
    cache : AsyncTTLCache
        The cache instance to use.
    key_func : callable
        Receives the decorated function's ``(*args, **kwargs)`` and returns
        the cache key.
    retry : int
        Attempts before giving up (default 3). After the last failure the
        stale value is returned if there is one, else the error propagates.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            cache_key = key_func(*args, **kwargs)

            result = cache.get(cache_key)
            if result is not _MISSING:
                return result

            async with cache._get_lock(cache_key):
                result = cache.get(cache_key)
                if result is not _MISSING:
                    return result

                last_exc: BaseException | None = None
                for attempt in range(1, retry + 1):
                    try:
                        result = await func(*args, **kwargs)
                        cache.set(cache_key, result)
                        return result
                    except asyncio.CancelledError:
                        raise
                    except Exception as exc:
                        last_exc = exc
                        if attempt < retry:
                            delay = 1.0 * attempt
                            logger.warning(
                                "Lookup attempt %d/%d failed for %s: %s, retrying in %.1fs",
                                attempt,
                                retry,
                                cache_key,
                                type(exc).__name__,
                                delay,
                            )
                            await asyncio.sleep(delay)

                stale = cache.get_stale(cache_key)
                if stale is not _MISSING:
                    logger.warning(
                        "Returning stale data for %s (%s)", cache_key, type(last_exc).__name__
                    )
                    return stale

                raise last_exc  # type: ignore[misc]

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
