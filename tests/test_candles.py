"""Tests for candle normalisation and trade bucketing."""

from __future__ import annotations

import asyncio

import pytest

from backpack_monitor.core.config import DataConfig
from backpack_monitor.core.models import Candle, Trade
from backpack_monitor.core.timeframes import UnsupportedTimeframeError
from backpack_monitor.data.candles import CandleNormalizer, bucket_trades, merge_candles
from conftest import NOW, make_candles


def _normalizer(exchange, clock, **overrides) -> CandleNormalizer:
    return CandleNormalizer(exchange, DataConfig(**overrides), clock)


class TestBucketTrades:
    def test_window_alignment_and_values(self):
        trades = [
            Trade(timestamp=120, price=10.0, quantity=1.0),
            Trade(timestamp=130, price=12.0, quantity=2.0),
            Trade(timestamp=150, price=9.0, quantity=1.0),
            Trade(timestamp=185, price=11.0, quantity=1.0),
        ]
        candles = bucket_trades(trades, 60)
        assert [c.open_time for c in candles] == [120, 180]
        first, second = candles
        assert (first.open, first.high, first.low, first.close) == (10.0, 12.0, 9.0, 9.0)
        assert first.volume == pytest.approx(10 + 24 + 9)
        assert (second.open, second.close, second.volume) == (11.0, 11.0, 11.0)

    def test_unsorted_input_and_empty_buckets(self):
        trades = [
            Trade(timestamp=400, price=5.0, quantity=1.0),
            Trade(timestamp=10, price=1.0, quantity=1.0),
            Trade(timestamp=20, price=2.0, quantity=1.0),
        ]
        candles = bucket_trades(trades, 60)
        # the 60..359 windows had no trades and are not forward-filled
        assert [c.open_time for c in candles] == [0, 360]
        assert candles[0].open == 1.0 and candles[0].close == 2.0

    def test_ignores_non_positive_prices(self):
        assert bucket_trades([Trade(timestamp=5, price=0.0, quantity=3.0)], 60) == []


def test_merge_candles_last_write_wins():
    first = Candle(open_time=60, open=1, high=1, low=1, close=1, volume=1)
    replacement = Candle(open_time=60, open=2, high=2, low=2, close=2, volume=2)
    earlier = Candle(open_time=0, open=3, high=3, low=3, close=3, volume=3)
    assert merge_candles([first, earlier, replacement]) == [earlier, replacement]


class TestCandleNormalizer:
    def test_native_candles(self, exchange, clock):
        exchange.klines[("BTC_USDC", "1h")] = make_candles([float(i) for i in range(1, 31)], step=3600)
        candles = asyncio.run(_normalizer(exchange, clock).fetch("BTC_USDC", "1h", 20))
        assert len(candles) == 20
        assert candles[-1].close == 30.0
        assert [c.open_time for c in candles] == sorted(c.open_time for c in candles)
        assert exchange.calls == [("klines", "BTC_USDC", "1h")]

    def test_falls_back_from_3m_to_5m(self, exchange, clock):
        exchange.klines[("SOL_USDC", "3m")] = make_candles([1.0] * 4)
        exchange.klines[("SOL_USDC", "5m")] = make_candles([2.0] * 15, step=300)
        candles = asyncio.run(_normalizer(exchange, clock).fetch("SOL_USDC", "3m", 100))
        assert len(candles) == 15
        assert {c.close for c in candles} == {2.0}
        assert ("klines", "SOL_USDC", "5m") in exchange.calls

    def test_10m_uses_15m_klines(self, exchange, clock):
        exchange.klines[("ETH_USDC", "15m")] = make_candles([3.0] * 12, step=900)
        candles = asyncio.run(_normalizer(exchange, clock).fetch("ETH_USDC", "10m", 50))
        assert len(candles) == 12
        assert exchange.calls == [("klines", "ETH_USDC", "15m")]

    def test_trade_fallback(self, exchange, clock):
        exchange.trades["NEW_USDC"] = [
            Trade(timestamp=NOW - 60 * i, price=1.0 + i / 100, quantity=10.0) for i in range(30, 0, -1)
        ]
        candles = asyncio.run(_normalizer(exchange, clock).fetch("NEW_USDC", "1m", 25))
        assert len(candles) == 25
        assert all(c.volume > 0 for c in candles)
        trade_call = [c for c in exchange.calls if c[0] == "trades"]
        assert trade_call == [("trades", "NEW_USDC", 1000)]

    def test_trade_request_uses_configured_cap(self, exchange, clock):
        asyncio.run(_normalizer(exchange, clock, max_trades=50).fetch("X_USDC", "1m", 100))
        assert ("trades", "X_USDC", 50) in exchange.calls

    def test_trades_outside_window_are_dropped(self, exchange, clock):
        # 10 one-minute candles x 4 -> trades older than 2400s are ignored
        stale = [Trade(timestamp=NOW - 10_000 - 60 * i, price=9.0, quantity=1.0) for i in range(3)]
        recent = [Trade(timestamp=NOW - 60 * i, price=1.0, quantity=1.0) for i in range(5, 0, -1)]
        exchange.trades["OLD_USDC"] = stale[::-1] + recent
        candles = asyncio.run(_normalizer(exchange, clock).fetch("OLD_USDC", "1m", 10))
        assert len(candles) == 5
        assert min(c.open_time for c in candles) >= NOW - 2400 - 60
        assert {c.close for c in candles} == {1.0}

    def test_series_reports_volume_units(self, exchange, clock):
        exchange.klines[("BTC_USDC", "1h")] = make_candles([1.0] * 12, step=3600)
        exchange.trades["NEW_USDC"] = [
            Trade(timestamp=NOW - 60 * i, price=2.0, quantity=1.0) for i in range(15, 0, -1)
        ]
        normalizer = _normalizer(exchange, clock)
        native = asyncio.run(normalizer.fetch_series("BTC_USDC", "1h"))
        synthesized = asyncio.run(normalizer.fetch_series("NEW_USDC", "1m"))
        assert len(native) == 12 and native.quote_volume is False
        assert len(synthesized) == 15 and synthesized.quote_volume is True

    def test_keeps_native_when_trades_are_worse(self, exchange, clock):
        exchange.klines[("THIN_USDC", "1h")] = make_candles([5.0] * 6, step=3600)
        exchange.trades["THIN_USDC"] = [Trade(timestamp=NOW, price=5.0, quantity=1.0)]
        candles = asyncio.run(_normalizer(exchange, clock).fetch("THIN_USDC", "1h", 100))
        assert len(candles) == 6

    def test_no_data_is_empty_not_error(self, exchange, clock):
        assert asyncio.run(_normalizer(exchange, clock).fetch("GHOST_USDC", "3m")) == []

    def test_source_errors_are_swallowed(self, clock):
        class Broken:
            async def fetch_klines(self, *args):
                raise RuntimeError("boom")

            async def fetch_trades(self, *args):
                raise RuntimeError("boom")

        assert asyncio.run(CandleNormalizer(Broken(), DataConfig(), clock).fetch("A", "3m")) == []

    def test_rejects_unknown_timeframe(self, exchange, clock):
        with pytest.raises(UnsupportedTimeframeError):
            asyncio.run(_normalizer(exchange, clock).fetch("A", "2m"))
