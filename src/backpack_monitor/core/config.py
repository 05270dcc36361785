"""Configuration loading utilities for the market monitor."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Literal

import yaml
from pydantic import BaseModel, Field

CONFIG_ENV_PREFIX = "BPM_"


class ExchangeConfig(BaseModel):
    name: str = "backpack"
    base_url: str = "https://api.backpack.exchange/api/v1"
    timeout_seconds: float = 10.0
    retry_attempts: int = 3
    retry_backoff_seconds: float = 1.0


class DataConfig(BaseModel):
    default_timeframe: str = "3m"
    candle_count: int = 100
    min_candles: int = 10
    trade_window_multiplier: int = 4
    max_trades: int = 1000
    batch_size: int = 5
    perp_suffix: str = "_PERP"
    spot_quote_suffixes: List[str] = Field(default_factory=lambda: ["_USDC"])


class IndicatorConfig(BaseModel):
    rsi_period: int = 14
    atr_period: int = 14
    bb_period: int = 20
    bb_std_multiplier: float = 2.0
    ema_period: int = 20


class DecisionConfig(BaseModel):
    threshold_policy: Literal["fixed", "timeframe_scaled"] = "timeframe_scaled"
    safe_atr_threshold: float = 0.01
    bb_width_threshold: float = 0.01
    min_candle_volume_usd: float = 100_000.0
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    volume_gate: bool = True


class CacheConfig(BaseModel):
    ttl_seconds: float = 180.0
    background_refresh: bool = False
    refresh_interval_seconds: float = 60.0
    warm_timeframes: List[str] = Field(default_factory=lambda: ["3m"])


class AssetWatchConfig(BaseModel):
    enabled: bool = False
    interval_seconds: float = 300.0
    history: int = 100


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"


class Config(BaseModel):
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    assets: AssetWatchConfig = Field(default_factory=AssetWatchConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @staticmethod
    def load(path: str | Path | None = None, env_prefix: str = CONFIG_ENV_PREFIX) -> "Config":
        """Load config from YAML file if provided, then apply env overrides."""
        data: Dict[str, Any] = {}
        if path is not None:
            data = yaml.safe_load(Path(path).read_text()) or {}
        _apply_env_overrides(data, env_prefix)
        return Config(**data)


_ENV_OVERRIDES = {
    "BASE_URL": ("exchange", "base_url"),
    "CACHE_TTL": ("cache", "ttl_seconds"),
    "BATCH_SIZE": ("data", "batch_size"),
    "THRESHOLD_POLICY": ("decision", "threshold_policy"),
    "LOG_LEVEL": ("server", "log_level"),
}


def _apply_env_overrides(data: Dict[str, Any], env_prefix: str) -> None:
    for suffix, (section, key) in _ENV_OVERRIDES.items():
        raw = os.getenv(f"{env_prefix}{suffix}")
        if raw is None:
            continue
        data.setdefault(section, {})[key] = raw
