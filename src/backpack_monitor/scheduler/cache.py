"""Time-boxed snapshot cache partitioned by market class and timeframe."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from backpack_monitor.core.models import CacheEntry, MarketClass
from backpack_monitor.data.provider_base import SystemTimeProvider, TimeProvider

logger = logging.getLogger(__name__)

PartitionKey = Tuple[MarketClass, str]
BuildFn = Callable[[MarketClass, str], Awaitable[list]]

NO_TIMEFRAME = "-"


def partition_key(market_class: MarketClass, timeframe: str) -> PartitionKey:
    if market_class == MarketClass.TRANSFER:
        return market_class, NO_TIMEFRAME
    return market_class, timeframe


class RefreshCache:
    """Serve the last good snapshot per partition, rebuilding it once stale.

    A failed rebuild keeps the previous entry; readers get an empty tuple only
    while a partition has never been populated.
    """

    def __init__(
        self,
        build: BuildFn,
        ttl_seconds: float = 180.0,
        time_provider: TimeProvider | None = None,
    ) -> None:
        self._build = build
        self._ttl = ttl_seconds
        self._time = time_provider or SystemTimeProvider()
        self._entries: Dict[PartitionKey, CacheEntry] = {}
        self._locks: Dict[PartitionKey, asyncio.Lock] = {}
        self._generations: Dict[PartitionKey, int] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def peek(self, market_class: MarketClass, timeframe: str) -> Optional[CacheEntry]:
        return self._entries.get(partition_key(market_class, timeframe))

    def entries(self) -> Dict[PartitionKey, CacheEntry]:
        return dict(self._entries)

    def is_fresh(self, entry: Optional[CacheEntry]) -> bool:
        return entry is not None and entry.age(self._time.now()) < self._ttl

    async def get(self, market_class: MarketClass, timeframe: str) -> tuple:
        entry = self.peek(market_class, timeframe)
        if self.is_fresh(entry):
            return entry.items
        entry = await self._refresh(partition_key(market_class, timeframe), force=False)
        return entry.items if entry else ()

    async def refresh(self, market_class: MarketClass, timeframe: str) -> tuple:
        """Rebuild a partition regardless of its age."""
        entry = await self._refresh(partition_key(market_class, timeframe), force=True)
        return entry.items if entry else ()

    async def _refresh(self, key: PartitionKey, *, force: bool) -> Optional[CacheEntry]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        generation = self._generations.get(key, 0)
        async with lock:
            current = self._entries.get(key)
            # Another caller finished a rebuild while we waited on the lock.
            rebuilt = self._generations.get(key, 0) != generation
            if self.is_fresh(current) and (rebuilt or not force):
                return current
            market_class, timeframe = key
            try:
                items = await self._build(market_class, timeframe)
            except Exception:
                logger.exception(
                    "Refresh failed for %s/%s; serving %s",
                    market_class.value,
                    timeframe,
                    "stale entry" if current else "empty result",
                )
                return current
            entry = CacheEntry(captured_at=self._time.now(), timeframe=timeframe, items=tuple(items))
            self._entries[key] = entry
            self._generations[key] = self._generations.get(key, 0) + 1
            logger.info(
                "Refreshed %s/%s with %d items", market_class.value, timeframe, len(entry.items)
            )
            return entry
