"""Per-market snapshot assembly across a whole market class."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Dict, List, Optional, Sequence

from backpack_monitor.core.concurrency import bounded_gather
from backpack_monitor.core.config import Config
from backpack_monitor.core.models import (
    Decision,
    ListingStatus,
    MarketClass,
    MarketInfo,
    MarketSnapshot,
    Ticker,
    TransferNetwork,
)
from backpack_monitor.core.timeframes import validate_timeframe
from backpack_monitor.data.candles import CandleNormalizer
from backpack_monitor.data.provider_base import MarketDataSource, SystemTimeProvider, TimeProvider
from backpack_monitor.indicators.calculator import IndicatorCalculator
from backpack_monitor.signals.evaluator import DecisionClassifier

logger = logging.getLogger(__name__)

_PIN_ORDER = {
    ListingStatus.UPCOMING: 0,
    ListingStatus.NEW: 0,
    ListingStatus.NORMAL: 1,
    ListingStatus.ABANDONED: 2,
}


def classify_listing(market: MarketInfo) -> ListingStatus:
    state = market.order_book_state.lower()
    if state == "postonly":
        return ListingStatus.NEW if market.visible else ListingStatus.UPCOMING
    return ListingStatus.NORMAL


def spread_pct(ticker: Ticker) -> float:
    if not ticker.bid or not ticker.ask or ticker.bid <= 0 or ticker.ask <= 0:
        return 0.0
    mid = (ticker.bid + ticker.ask) / 2
    return max((ticker.ask - ticker.bid) / mid * 100, 0.0)


def liquidity_score(volume_usd: float, spread: float) -> float:
    if volume_usd <= 0:
        return 0.0
    return math.log10(1 + volume_usd) / (1 + spread)


class SnapshotBuilder:
    """Fetch, compute and classify every market of one class."""

    def __init__(
        self,
        config: Config,
        source: MarketDataSource,
        normalizer: CandleNormalizer | None = None,
        calculator: IndicatorCalculator | None = None,
        classifier: DecisionClassifier | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        self._config = config
        self._source = source
        self._time = time_provider or SystemTimeProvider()
        self._normalizer = normalizer or CandleNormalizer(source, config.data, self._time)
        self._calculator = calculator or IndicatorCalculator(config.indicators)
        self._classifier = classifier or DecisionClassifier(config.decision)

    async def build(self, market_class: MarketClass, timeframe: str) -> list:
        """Build one refresh cycle. Raises only when a bulk upstream call fails."""
        if market_class == MarketClass.TRANSFER:
            return await self.build_transfer()
        validate_timeframe(timeframe)
        if market_class == MarketClass.PERP:
            return await self.build_perp(timeframe)
        return await self.build_spot(timeframe)

    async def build_perp(self, timeframe: str) -> List[MarketSnapshot]:
        markets, open_interest = await asyncio.gather(
            self._source.fetch_markets(), self._source.fetch_open_interest()
        )
        perp = [m for m in markets if m.symbol.endswith(self._config.data.perp_suffix)]
        snapshots = await self._build_markets(perp, timeframe, open_interest)
        return sorted(
            snapshots,
            key=lambda s: (_PIN_ORDER[s.listing_status], -s.open_interest_usd, s.symbol),
        )

    async def build_spot(self, timeframe: str) -> List[MarketSnapshot]:
        markets = await self._source.fetch_markets()
        suffixes = tuple(self._config.data.spot_quote_suffixes)
        spot = [
            m
            for m in markets
            if not m.symbol.endswith(self._config.data.perp_suffix)
            and (not suffixes or m.symbol.endswith(suffixes))
        ]
        snapshots = await self._build_markets(spot, timeframe, None)
        return sorted(
            snapshots,
            key=lambda s: (_PIN_ORDER[s.listing_status], -s.liquidity_score, s.symbol),
        )

    async def build_transfer(self) -> List[TransferNetwork]:
        networks = await self._source.fetch_assets()
        return sorted(networks, key=lambda n: (n.symbol, n.blockchain))

    async def _build_markets(
        self,
        markets: Sequence[MarketInfo],
        timeframe: str,
        open_interest: Optional[Dict[str, float]],
    ) -> List[MarketSnapshot]:
        async def _safe(market: MarketInfo) -> MarketSnapshot:
            try:
                return await self.build_market(market, timeframe, open_interest)
            except Exception as exc:
                logger.warning("Snapshot failed for %s: %s", market.symbol, exc)
                return MarketSnapshot.pending(
                    market.symbol,
                    timestamp=self._time.now(),
                    listing_status=classify_listing(market),
                    error=str(exc) or type(exc).__name__,
                )

        snapshots = await bounded_gather(_safe, markets, self._config.data.batch_size)
        logger.info(
            "Built %d %s snapshots (%d pending)",
            len(snapshots),
            "perp" if open_interest is not None else "spot",
            sum(1 for s in snapshots if s.decision == Decision.PENDING),
        )
        return snapshots

    async def build_market(
        self,
        market: MarketInfo,
        timeframe: str,
        open_interest: Optional[Dict[str, float]] = None,
    ) -> MarketSnapshot:
        ticker = await self._source.fetch_ticker(market.symbol) or Ticker(market.symbol)
        last_price = ticker.last_price
        volume_usd = ticker.volume * last_price
        oi_usd = (open_interest or {}).get(market.symbol, 0.0) * last_price
        spread = spread_pct(ticker)
        status = classify_listing(market)
        if (
            status == ListingStatus.NORMAL
            and market.visible
            and volume_usd <= 0
            and oi_usd <= 0
        ):
            status = ListingStatus.ABANDONED

        error: Optional[str] = None
        if last_price <= 0:
            error = "no last price"
        else:
            series = await self._normalizer.fetch_series(market.symbol, timeframe)
            if len(series) < self._config.data.min_candles:
                error = "insufficient candle history"
        if error is not None:
            return MarketSnapshot.pending(
                market.symbol,
                timestamp=self._time.now(),
                listing_status=status,
                error=error,
            )

        indicators = self._calculator.calculate(series.candles, last_price)
        last_volume_usd = self._calculator.last_candle_volume_usd(
            series.candles, last_price, quote_volume=series.quote_volume
        )
        decision, score = self._classifier.classify_indicators(
            last_price, indicators, last_volume_usd, timeframe
        )
        return MarketSnapshot(
            symbol=market.symbol,
            last_price=last_price,
            volume_usd=volume_usd,
            open_interest_usd=oi_usd,
            indicators=indicators,
            decision=decision,
            score=score,
            timestamp=self._time.now(),
            last_candle_volume_usd=last_volume_usd,
            liquidity_ratio=volume_usd / oi_usd if oi_usd else 0.0,
            spread_pct=spread,
            liquidity_score=liquidity_score(volume_usd, spread),
            listing_status=status,
        )
