"""Candle retrieval with native-interval fallback and trade bucketing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from backpack_monitor.core.config import DataConfig
from backpack_monitor.core.models import Candle, Trade
from backpack_monitor.core.timeframes import fallback_interval, native_interval, timeframe_seconds
from backpack_monitor.data.provider_base import CandleSource, SystemTimeProvider, TimeProvider

logger = logging.getLogger(__name__)


@dataclass
class CandleSeries:
    candles: List[Candle] = field(default_factory=list)
    # Kline volume is base quantity; candles bucketed from trades carry quote notional.
    quote_volume: bool = False

    def __len__(self) -> int:
        return len(self.candles)


class CandleNormalizer:
    """Produce an ascending, de-duplicated candle series for one symbol."""

    def __init__(
        self,
        source: CandleSource,
        config: DataConfig | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        self._source = source
        self._cfg = config or DataConfig()
        self._time = time_provider or SystemTimeProvider()

    async def fetch(self, symbol: str, timeframe: str, count: int | None = None) -> List[Candle]:
        return (await self.fetch_series(symbol, timeframe, count)).candles

    async def fetch_series(
        self, symbol: str, timeframe: str, count: int | None = None
    ) -> CandleSeries:
        count = count or self._cfg.candle_count
        tf_seconds = timeframe_seconds(timeframe)
        end = int(self._time.now())
        start = end - count * tf_seconds

        interval = native_interval(timeframe)
        candles = await self._native(symbol, interval, start, end, count)
        if len(candles) < self._cfg.min_candles:
            fallback = fallback_interval(timeframe)
            if fallback:
                logger.debug("%s: %d %s candles, retrying with %s", symbol, len(candles), interval, fallback)
                retried = await self._native(symbol, fallback, start, end, count)
                if len(retried) > len(candles):
                    candles = retried
        if len(candles) >= self._cfg.min_candles:
            return CandleSeries(candles)

        trade_start = end - count * tf_seconds * self._cfg.trade_window_multiplier
        synthesized = await self._from_trades(symbol, tf_seconds, count, trade_start)
        if len(synthesized) > len(candles):
            return CandleSeries(synthesized, quote_volume=True)
        if not candles:
            logger.info("%s: no candle data for %s", symbol, timeframe)
        return CandleSeries(candles)

    async def _native(
        self, symbol: str, interval: str, start: int, end: int, count: int
    ) -> List[Candle]:
        try:
            raw = await self._source.fetch_klines(symbol, interval, start, end)
        except Exception as exc:
            logger.warning("%s: klines %s failed: %s", symbol, interval, exc)
            return []
        return merge_candles(raw)[-count:]

    async def _from_trades(
        self, symbol: str, tf_seconds: int, count: int, since: int
    ) -> List[Candle]:
        # The trades endpoint is count-limited; ask for the cap and keep what falls in the window.
        try:
            trades = await self._source.fetch_trades(symbol, self._cfg.max_trades)
        except Exception as exc:
            logger.warning("%s: trade fallback failed: %s", symbol, exc)
            return []
        recent = [t for t in trades if t.timestamp >= since]
        return bucket_trades(recent, tf_seconds)[-count:]


def merge_candles(candles: Iterable[Candle]) -> List[Candle]:
    """Sort by open time; a later duplicate replaces an earlier one."""
    by_time: Dict[int, Candle] = {}
    for candle in candles:
        by_time[candle.open_time] = candle
    return [by_time[key] for key in sorted(by_time)]


def bucket_trades(trades: Iterable[Trade], tf_seconds: int) -> List[Candle]:
    """Aggregate trade prints into OHLCV candles; empty buckets are skipped.

    Volume is quote notional (sum of price * quantity).
    """
    buckets: Dict[int, Candle] = {}
    for trade in sorted(trades, key=lambda t: t.timestamp):
        if trade.price <= 0:
            continue
        open_time = trade.timestamp - trade.timestamp % tf_seconds
        notional = trade.price * trade.quantity
        candle = buckets.get(open_time)
        if candle is None:
            buckets[open_time] = Candle(
                open_time=open_time,
                open=trade.price,
                high=trade.price,
                low=trade.price,
                close=trade.price,
                volume=notional,
            )
            continue
        candle.high = max(candle.high, trade.price)
        candle.low = min(candle.low, trade.price)
        candle.close = trade.price
        candle.volume += notional
    return [buckets[key] for key in sorted(buckets)]
