"""
TokRelay In-Memory Result Cache Module

Time-bounded memoization of extracted video metadata, keyed by the
normalized page URL (host + path, query discarded). Backed by
``cachetools.TTLCache``. Features:

- Fixed TTL per entry (default 300 seconds)
- Background sweep task dropping expired entries every ``ttl * 0.2`` seconds
- Hit / miss / key statistics for the health endpoint
- Injectable clock so expiry can be tested without sleeping

All operations run on the asyncio event loop thread, so no locking is
needed. There is no size bound, no per-key deletion and no persistence.

Usage:
    ```python
    from tokrelay.core.result_cache import ResultCache, cache_key_for

    cache = ResultCache(ttl_seconds=300)
    cache.start()                       # inside a running event loop
    cache.set(cache_key_for(url), metadata)
    metadata = cache.get(cache_key_for(url))
    await cache.stop()
    ```
"""

import asyncio
import contextlib
import logging
import math
import time

from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

from cachetools import TTLCache
from pydantic import BaseModel


# Configure module logger
logger = logging.getLogger(__name__)


DEFAULT_TTL_SECONDS: int = 300

# Fraction of the TTL between background sweeps
CHECK_PERIOD_RATIO: float = 0.2

_MISSING = object()


class CacheStats(BaseModel):
    """Cache counters reported by the health endpoint."""

    hits: int = 0
    misses: int = 0
    keys: int = 0


def cache_key_for(url: str) -> str:
    """
    Build the cache key for a page URL: hostname followed by path.

    Query string and fragment are discarded, so share links differing only
    in tracking parameters land on the same entry. Unparsable input is
    returned as-is.
    """
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError:
        return url
    if not parts.scheme or not hostname:
        return url
    return f"{hostname}{parts.path or '/'}"


class ResultCache:
    """
    TTL cache with hit/miss accounting and a background expiry task.

    Attributes:
        ttl_seconds: Lifetime of every entry
        check_period: Seconds between background sweeps
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        check_period: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self.check_period = check_period if check_period is not None else ttl_seconds * CHECK_PERIOD_RATIO
        # unbounded
        self._store: TTLCache = TTLCache(maxsize=math.inf, ttl=ttl_seconds, timer=clock)
        self._hits = 0
        self._misses = 0
        self._sweeper: asyncio.Task | None = None

    # =========================================================================
    # Key-value operations
    # =========================================================================

    def get(self, key: str) -> Any | None:
        """Return the live value for key, counting a hit or a miss."""
        value = self._store.get(key, _MISSING)
        if value is _MISSING:
            self._misses += 1
            return None
        self._hits += 1
        return value

    def set(self, key: str, value: Any) -> None:
        """Store value under key, replacing any previous entry and its deadline."""
        self._store[key] = value

    def flush_all(self) -> None:
        """Drop every entry and reset the statistics."""
        self._store.clear()
        self._hits = 0
        self._misses = 0

    def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        expired = self._store.expire()
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)

    def stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, keys=len(self))

    def __len__(self) -> int:
        self._store.expire()
        return len(self._store)

    # =========================================================================
    # Background sweep lifecycle
    # =========================================================================

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.check_period)
            self.sweep()

    def start(self) -> None:
        """Start the background sweep task on the running event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.info(
            "Result cache started: ttl=%ss check_period=%ss", self.ttl_seconds, self.check_period
        )

    async def stop(self) -> None:
        """Cancel the background sweep task and wait for it to finish."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
        logger.info("Result cache stopped")

    @property
    def is_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()
