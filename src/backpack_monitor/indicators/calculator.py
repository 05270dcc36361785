"""Indicator calculation helpers built on top of pandas."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import pandas as pd

from backpack_monitor.core.config import IndicatorConfig
from backpack_monitor.core.models import Candle, IndicatorSet

EPSILON = 1e-9
NEUTRAL_RSI = 50.0


def _finite(value: float, default: float = 0.0) -> float:
    value = float(value)
    return value if math.isfinite(value) else default


def rsi(closes: Sequence[float], period: int = 14) -> float:
    """RSI from the simple mean of the last ``period`` gains and losses.

    A window without losses divides by epsilon and lands near 100; a flat
    window has zero gain and lands at 0.
    """
    if period < 1 or len(closes) < period + 1:
        return NEUTRAL_RSI
    delta = pd.Series(closes, dtype="float64").diff().iloc[1:]
    window = delta.tail(period)
    avg_gain = window.clip(lower=0).mean()
    avg_loss = (-window.clip(upper=0)).mean() or EPSILON
    value = 100 - 100 / (1 + avg_gain / avg_loss)
    return min(max(_finite(value, NEUTRAL_RSI), 0.0), 100.0)


def true_range(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float]
) -> pd.Series:
    """True range for every bar after the first."""
    df = pd.DataFrame({"high": highs, "low": lows, "close": closes}, dtype="float64")
    prev_close = df["close"].shift(1)
    tr = pd.concat(
        [
            df["high"] - df["low"],
            (df["high"] - prev_close).abs(),
            (df["low"] - prev_close).abs(),
        ],
        axis=1,
    ).max(axis=1)
    return tr.iloc[1:]


def atr(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> float:
    n = min(len(highs), len(lows), len(closes))
    if n < 2:
        return 0.0
    tr = true_range(highs[-n:], lows[-n:], closes[-n:])
    return max(_finite(tr.tail(max(period, 1)).mean()), 0.0)


def atr_relative(atr_value: float, last_price: float) -> float:
    if not last_price:
        return 0.0
    return _finite(atr_value / last_price)


@dataclass(frozen=True)
class BollingerBands:
    middle: float = 0.0
    upper: float = 0.0
    lower: float = 0.0
    width: float = 0.0


def bollinger_bands(
    closes: Sequence[float], period: int = 20, std_multiplier: float = 2.0
) -> BollingerBands:
    """Bands over the last ``period`` closes using population standard deviation."""
    if not closes:
        return BollingerBands()
    window = pd.Series(closes, dtype="float64").tail(max(period, 1))
    middle = _finite(window.mean())
    std = _finite(window.std(ddof=0))
    width = (2 * std_multiplier * std) / middle if middle else 0.0
    return BollingerBands(
        middle=middle,
        upper=middle + std_multiplier * std,
        lower=middle - std_multiplier * std,
        width=max(_finite(width), 0.0),
    )


def bollinger_width(
    closes: Sequence[float], period: int = 20, std_multiplier: float = 2.0
) -> float:
    return bollinger_bands(closes, period, std_multiplier).width


def ema(closes: Sequence[float], period: int = 20) -> float:
    """EMA seeded from the first close; shorter series fall back to the mean."""
    if not closes:
        return 0.0
    series = pd.Series(closes, dtype="float64")
    if len(series) < period:
        return _finite(series.mean())
    return _finite(series.ewm(span=period, adjust=False).mean().iloc[-1])


class IndicatorCalculator:
    """Calculate the RSI/ATR/Bollinger/EMA set for one candle series."""

    def __init__(self, config: IndicatorConfig | None = None) -> None:
        self._cfg = config or IndicatorConfig()

    def calculate(self, candles: Sequence[Candle], last_price: float) -> IndicatorSet:
        if not candles:
            return IndicatorSet()
        closes = [c.close for c in candles]
        highs = [c.high for c in candles]
        lows = [c.low for c in candles]
        atr_value = atr(highs, lows, closes, self._cfg.atr_period)
        return IndicatorSet(
            rsi=rsi(closes, self._cfg.rsi_period),
            atr_rel=atr_relative(atr_value, last_price),
            bb_width=bollinger_width(closes, self._cfg.bb_period, self._cfg.bb_std_multiplier),
            ema=ema(closes, self._cfg.ema_period),
        )

    @staticmethod
    def last_candle_volume_usd(
        candles: Sequence[Candle], last_price: float, quote_volume: bool = False
    ) -> float:
        """USD volume of the newest candle.

        Kline volume is in base units and is priced at ``last_price``; candles
        built from trades already hold quote notional and are taken as is.
        """
        if not candles:
            return 0.0
        if quote_volume:
            return _finite(candles[-1].volume)
        return _finite(candles[-1].volume * last_price)
