"""Candle timeframe labels supported by the monitor."""

from __future__ import annotations

from typing import Dict, Optional

TIMEFRAME_SECONDS: Dict[str, int] = {
    "1m": 60,
    "3m": 180,
    "5m": 300,
    "10m": 600,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "4h": 14400,
    "12h": 43200,
    "1d": 86400,
}

# 10m has no native exchange interval; it is always served from 15m klines.
NATIVE_INTERVAL: Dict[str, str] = {"10m": "15m"}

FALLBACK_INTERVAL: Dict[str, str] = {"3m": "5m"}


class UnsupportedTimeframeError(ValueError):
    def __init__(self, label: str) -> None:
        super().__init__(
            f"Unsupported timeframe {label!r}; expected one of {', '.join(TIMEFRAME_SECONDS)}"
        )
        self.label = label


def validate_timeframe(label: str) -> str:
    if label not in TIMEFRAME_SECONDS:
        raise UnsupportedTimeframeError(label)
    return label


def timeframe_seconds(label: str) -> int:
    return TIMEFRAME_SECONDS[validate_timeframe(label)]


def timeframe_minutes(label: str) -> float:
    return timeframe_seconds(label) / 60


def native_interval(label: str) -> str:
    validate_timeframe(label)
    return NATIVE_INTERVAL.get(label, label)


def fallback_interval(label: str) -> Optional[str]:
    """Second native interval to try when the first returns too few candles."""
    return FALLBACK_INTERVAL.get(label)
