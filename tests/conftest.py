"""
Shared pytest fixtures for the monitor test suite.

Provides an in-memory exchange and a controllable clock so builder, cache and
API tests run without touching the network.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from backpack_monitor.core.config import Config
from backpack_monitor.core.models import Candle, MarketInfo, Ticker, Trade, TransferNetwork
from backpack_monitor.data.provider_base import MarketDataSource, TimeProvider

NOW = 1_700_000_000


class FakeClock(TimeProvider):
    def __init__(self, start: float = NOW) -> None:
        self.current = float(start)

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def make_candles(
    closes: List[float],
    *,
    spread: float = 0.0,
    volume: float = 1000.0,
    start: int = NOW - 180 * 200,
    step: int = 180,
) -> List[Candle]:
    return [
        Candle(
            open_time=start + i * step,
            open=close,
            high=close + spread,
            low=close - spread,
            close=close,
            volume=volume,
        )
        for i, close in enumerate(closes)
    ]


class FakeExchange(MarketDataSource):
    """Scriptable stand-in for the Backpack REST API."""

    def __init__(self) -> None:
        self.markets: List[MarketInfo] = []
        self.open_interest: Dict[str, float] = {}
        self.tickers: Dict[str, Ticker] = {}
        self.klines: Dict[tuple, List[Candle]] = {}
        self.trades: Dict[str, List[Trade]] = {}
        self.assets: List[TransferNetwork] = []
        self.failing_tickers: set[str] = set()
        self.fail_markets = False
        self.calls: List[tuple] = []

    def add_market(
        self,
        symbol: str,
        price: float,
        *,
        volume: float = 1_000.0,
        oi: Optional[float] = None,
        candles: Optional[List[Candle]] = None,
        interval: str = "3m",
        visible: bool = True,
        state: str = "Open",
    ) -> None:
        self.markets.append(MarketInfo(symbol=symbol, visible=visible, order_book_state=state))
        self.tickers[symbol] = Ticker(symbol=symbol, last_price=price, volume=volume)
        if oi is not None:
            self.open_interest[symbol] = oi
        if candles is not None:
            self.klines[(symbol, interval)] = candles

    async def fetch_markets(self) -> List[MarketInfo]:
        self.calls.append(("markets",))
        if self.fail_markets:
            raise RuntimeError("markets endpoint down")
        return list(self.markets)

    async def fetch_open_interest(self) -> Dict[str, float]:
        self.calls.append(("openInterest",))
        return dict(self.open_interest)

    async def fetch_ticker(self, symbol: str) -> Optional[Ticker]:
        self.calls.append(("ticker", symbol))
        if symbol in self.failing_tickers:
            raise RuntimeError(f"ticker {symbol} failed")
        return self.tickers.get(symbol)

    async def fetch_klines(
        self, symbol: str, interval: str, start_time: int, end_time: int
    ) -> List[Candle]:
        self.calls.append(("klines", symbol, interval))
        return list(self.klines.get((symbol, interval), []))

    async def fetch_trades(self, symbol: str, limit: int) -> List[Trade]:
        self.calls.append(("trades", symbol, limit))
        return list(self.trades.get(symbol, []))[-limit:]

    async def fetch_assets(self) -> List[TransferNetwork]:
        self.calls.append(("assets",))
        return list(self.assets)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture()
def config() -> Config:
    cfg = Config()
    cfg.exchange.retry_backoff_seconds = 0
    return cfg


@pytest.fixture()
def calm_closes() -> List[float]:
    """Tight range around 100 with a slight dip at the end (RSI < 30)."""
    base = [100.0, 100.02, 100.01, 100.03, 100.02, 100.04, 100.03, 100.05, 100.04, 100.06]
    tail = [100.05, 100.04, 100.03, 100.02, 100.01, 100.0, 99.99, 99.98, 99.97, 99.96]
    return base * 2 + tail
