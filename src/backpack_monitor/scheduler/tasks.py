"""Wiring and periodic jobs: cache warm-up and the asset listing watch."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from backpack_monitor.core.config import Config
from backpack_monitor.core.models import AssetEvent, AssetEventType, MarketClass, TransferNetwork
from backpack_monitor.data.provider_base import (
    MarketDataSource,
    SystemTimeProvider,
    TimeProvider,
)
from backpack_monitor.scheduler.builder import SnapshotBuilder
from backpack_monitor.scheduler.cache import NO_TIMEFRAME, RefreshCache

logger = logging.getLogger(__name__)


def build_cache(
    config: Config,
    source: MarketDataSource,
    time_provider: TimeProvider | None = None,
) -> RefreshCache:
    builder = SnapshotBuilder(config, source, time_provider=time_provider)
    return RefreshCache(builder.build, config.cache.ttl_seconds, time_provider)


def warm_partitions(timeframes: Iterable[str]) -> list[Tuple[MarketClass, str]]:
    partitions: list[Tuple[MarketClass, str]] = []
    for tf in timeframes:
        partitions.append((MarketClass.PERP, tf))
        partitions.append((MarketClass.SPOT, tf))
    partitions.append((MarketClass.TRANSFER, NO_TIMEFRAME))
    return partitions


class PeriodicJob(ABC):
    """Run ``run_once`` on a fixed interval in a background task."""

    name = "periodic-job"

    def __init__(self, interval_seconds: float) -> None:
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await asyncio.gather(self._task, return_exceptions=True)
        finally:
            self._task = None

    @abstractmethod
    async def run_once(self) -> object:
        raise NotImplementedError

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as exc:
                logger.exception("%s failed: %s", self.name, exc)
            await asyncio.sleep(self._interval)


class BackgroundRefresher(PeriodicJob):
    """Keep selected cache partitions warm on a fixed interval."""

    name = "cache-refresh"

    def __init__(
        self,
        cache: RefreshCache,
        partitions: Sequence[Tuple[MarketClass, str]],
        interval_seconds: float,
    ) -> None:
        super().__init__(interval_seconds)
        self._cache = cache
        self._partitions = list(partitions)

    async def run_once(self) -> None:
        for market_class, timeframe in self._partitions:
            await self._cache.refresh(market_class, timeframe)


def diff_networks(
    previous: Iterable[TransferNetwork],
    current: Iterable[TransferNetwork],
    detected_at: float = 0.0,
) -> List[AssetEvent]:
    """Listing changes between two ``/assets`` polls.

    An unseen symbol is reported once as a new asset; for known symbols each
    unseen blockchain is a new chain, and a known chain whose deposits went
    from disabled to enabled is reported as such.
    """
    known: Dict[str, Dict[str, TransferNetwork]] = {}
    for net in previous:
        known.setdefault(net.symbol, {})[net.blockchain] = net

    events: List[AssetEvent] = []
    announced: set[str] = set()
    for net in current:
        chains = known.get(net.symbol)
        if chains is None:
            if net.symbol not in announced:
                announced.add(net.symbol)
                events.append(AssetEvent(AssetEventType.NEW_ASSET, net.symbol, detected_at=detected_at))
            continue
        before = chains.get(net.blockchain)
        if before is None:
            events.append(
                AssetEvent(AssetEventType.NEW_CHAIN, net.symbol, net.blockchain, detected_at)
            )
        elif net.deposit_enabled and not before.deposit_enabled:
            events.append(
                AssetEvent(AssetEventType.DEPOSIT_ENABLED, net.symbol, net.blockchain, detected_at)
            )
    return events


class AssetWatcher(PeriodicJob):
    """Poll ``/assets`` and report listings that changed since the last poll.

    The first successful poll only records a baseline.
    """

    name = "asset-watch"

    def __init__(
        self,
        source: MarketDataSource,
        interval_seconds: float = 300.0,
        history: int = 100,
        time_provider: TimeProvider | None = None,
    ) -> None:
        super().__init__(interval_seconds)
        self._source = source
        self._time = time_provider or SystemTimeProvider()
        self._previous: Optional[List[TransferNetwork]] = None
        self._recent: Deque[AssetEvent] = deque(maxlen=max(history, 1))

    @property
    def recent_events(self) -> List[AssetEvent]:
        return list(self._recent)

    async def run_once(self) -> List[AssetEvent]:
        networks = await self._source.fetch_assets()
        if self._previous is None:
            self._previous = list(networks)
            logger.info("Asset watch baseline: %d networks", len(networks))
            return []
        events = diff_networks(self._previous, networks, self._time.now())
        self._previous = list(networks)
        for event in events:
            logger.info(
                "Listing change: %s %s%s",
                event.kind.value,
                event.symbol,
                f" on {event.blockchain}" if event.blockchain else "",
            )
        self._recent.extend(events)
        return events
