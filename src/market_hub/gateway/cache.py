"""Two-tier TTL cache keyed by (category, key)."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from cachetools import TTLCache

from market_hub.core.config import CacheConfig
from market_hub.core.models import CacheCategory

logger = logging.getLogger(__name__)


class TTLStore:
    """Per-category TTL caches plus a longer-lived stale tier.

    The fresh tier answers normal reads. The stale tier keeps the last
    value for each key for ``stale_ttl`` seconds so it can be served when
    every upstream provider fails (stale-on-error).

    Values must be immutable (frozen models, tuples). Writes replace the
    previous value. Each tier is bounded; when full, the least recently
    used entry is evicted.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        config = config or CacheConfig()
        self._config = config
        self._fresh: dict[CacheCategory, TTLCache] = {}
        self._stale: dict[CacheCategory, TTLCache] = {}
        for category in CacheCategory:
            ttl = getattr(config, f"{category.value}_ttl")
            maxsize = getattr(config, f"{category.value}_maxsize")
            self._fresh[category] = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
            self._stale[category] = TTLCache(
                maxsize=maxsize, ttl=max(config.stale_ttl, ttl), timer=timer
            )
        self.hits = 0
        self.misses = 0

    def get(self, category: CacheCategory, key: str) -> Any | None:
        value = self._fresh[category].get(key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
            logger.debug("cache hit %s:%s", category.value, key)
        return value

    def get_stale(self, category: CacheCategory, key: str) -> Any | None:
        """Last known value for ``key``, even if its fresh TTL has passed."""
        return self._stale[category].get(key)

    def set(self, category: CacheCategory, key: str, value: Any) -> None:
        self._fresh[category][key] = value
        self._stale[category][key] = value

    def invalidate(self, category: CacheCategory, key: str) -> None:
        self._fresh[category].pop(key, None)

    def expire(self) -> int:
        """Evict expired entries from every tier. Returns entries removed."""
        before = self.size()
        for tier in (*self._fresh.values(), *self._stale.values()):
            tier.expire()
        removed = before - self.size()
        if removed:
            logger.debug("cache cleanup evicted %d entries", removed)
        return removed

    def size(self) -> int:
        return sum(len(t) for t in self._fresh.values()) + sum(
            len(t) for t in self._stale.values()
        )

    def clear(self) -> None:
        for tier in (*self._fresh.values(), *self._stale.values()):
            tier.clear()

    def stats(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "entries": {c.value: len(self._fresh[c]) for c in CacheCategory},
        }

    async def cleanup_loop(self, interval: float | None = None) -> None:
        """Run ``expire()`` forever every ``interval`` seconds."""
        interval = interval or self._config.cleanup_interval
        while True:
            await asyncio.sleep(interval)
            self.expire()
