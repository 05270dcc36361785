"""Market-state classification from indicator values."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

from backpack_monitor.core.config import DecisionConfig
from backpack_monitor.core.models import Decision, IndicatorSet
from backpack_monitor.core.timeframes import timeframe_minutes


@dataclass(frozen=True)
class Thresholds:
    atr_rel: float
    bb_width: float
    min_candle_volume_usd: float


class ThresholdPolicy(ABC):
    @abstractmethod
    def thresholds(self, timeframe: Optional[str]) -> Thresholds:
        raise NotImplementedError


class FixedThresholds(ThresholdPolicy):
    """Same thresholds for every timeframe."""

    def __init__(self, config: DecisionConfig) -> None:
        self._base = Thresholds(
            atr_rel=config.safe_atr_threshold,
            bb_width=config.bb_width_threshold,
            min_candle_volume_usd=config.min_candle_volume_usd,
        )

    def thresholds(self, timeframe: Optional[str]) -> Thresholds:
        return self._base


class TimeframeScaledThresholds(FixedThresholds):
    """Widen the ATR/BB thresholds for longer candles by ``log10(minutes)/2 + 1``."""

    def thresholds(self, timeframe: Optional[str]) -> Thresholds:
        if not timeframe:
            return self._base
        factor = self.scale_factor(timeframe)
        return Thresholds(
            atr_rel=self._base.atr_rel * factor,
            bb_width=self._base.bb_width * factor,
            min_candle_volume_usd=self._base.min_candle_volume_usd,
        )

    @staticmethod
    def scale_factor(timeframe: str) -> float:
        return math.log10(timeframe_minutes(timeframe)) / 2 + 1


def build_threshold_policy(config: DecisionConfig) -> ThresholdPolicy:
    if config.threshold_policy == "fixed":
        return FixedThresholds(config)
    return TimeframeScaledThresholds(config)


def _available(value: float) -> bool:
    return value is not None and math.isfinite(value) and value != 0


class DecisionClassifier:
    """Map price and indicator readings to a decision label and score."""

    def __init__(
        self,
        config: DecisionConfig | None = None,
        policy: ThresholdPolicy | None = None,
    ) -> None:
        self._cfg = config or DecisionConfig()
        self._policy = policy or build_threshold_policy(self._cfg)

    def classify(
        self,
        price: float,
        atr_rel: float,
        rsi: float,
        bb_width: float,
        ema: float,
        last_candle_volume_usd: Optional[float] = None,
        timeframe: Optional[str] = None,
    ) -> Tuple[Decision, int]:
        if not all(_available(v) for v in (atr_rel, rsi, bb_width)):
            return Decision.PENDING, 0

        limits = self._policy.thresholds(timeframe)
        volume_ok = (
            not self._cfg.volume_gate
            or last_candle_volume_usd is None
            or last_candle_volume_usd >= limits.min_candle_volume_usd
        )
        if atr_rel < limits.atr_rel and bb_width <= limits.bb_width and volume_ok:
            if rsi < self._cfg.rsi_oversold and price > ema:
                return Decision.LONG, 2
            if rsi > self._cfg.rsi_overbought and price < ema:
                return Decision.SHORT, -2
            return Decision.LATERAL, 1
        return Decision.NEUTRAL, 0

    def classify_indicators(
        self,
        price: float,
        indicators: IndicatorSet,
        last_candle_volume_usd: Optional[float] = None,
        timeframe: Optional[str] = None,
    ) -> Tuple[Decision, int]:
        return self.classify(
            price,
            indicators.atr_rel,
            indicators.rsi,
            indicators.bb_width,
            indicators.ema,
            last_candle_volume_usd,
            timeframe,
        )
