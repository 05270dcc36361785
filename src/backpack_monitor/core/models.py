"""Shared data models used across modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Decision(str, Enum):
    LONG = "long"
    SHORT = "short"
    LATERAL = "lateral"
    NEUTRAL = "neutral"
    PENDING = "pending"


class MarketClass(str, Enum):
    PERP = "perp"
    SPOT = "spot"
    TRANSFER = "transfer"


class ListingStatus(str, Enum):
    UPCOMING = "upcoming"
    NEW = "new"
    NORMAL = "normal"
    ABANDONED = "abandoned"


@dataclass
class Candle:
    open_time: int  # epoch seconds
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class Trade:
    timestamp: int  # epoch seconds
    price: float
    quantity: float


@dataclass
class Ticker:
    symbol: str
    last_price: float = 0.0
    volume: float = 0.0
    bid: Optional[float] = None
    ask: Optional[float] = None


@dataclass
class MarketInfo:
    symbol: str
    visible: bool = True
    order_book_state: str = "Open"
    created_at: Optional[str] = None
    market_type: Optional[str] = None

    @property
    def is_perp(self) -> bool:
        return self.symbol.endswith("_PERP")


@dataclass(frozen=True)
class IndicatorSet:
    rsi: float = 0.0
    atr_rel: float = 0.0
    bb_width: float = 0.0
    ema: float = 0.0


@dataclass(frozen=True)
class MarketSnapshot:
    symbol: str
    last_price: float = 0.0
    volume_usd: float = 0.0
    open_interest_usd: float = 0.0
    indicators: IndicatorSet = field(default_factory=IndicatorSet)
    decision: Decision = Decision.PENDING
    score: int = 0
    timestamp: float = 0.0
    last_candle_volume_usd: float = 0.0
    liquidity_ratio: float = 0.0
    spread_pct: float = 0.0
    liquidity_score: float = 0.0
    listing_status: ListingStatus = ListingStatus.NORMAL
    error: Optional[str] = None

    @classmethod
    def pending(
        cls,
        symbol: str,
        *,
        timestamp: float = 0.0,
        listing_status: ListingStatus = ListingStatus.NORMAL,
        error: Optional[str] = None,
    ) -> "MarketSnapshot":
        """Zero-valued placeholder for a market whose data could not be built."""
        return cls(
            symbol=symbol,
            timestamp=timestamp,
            listing_status=listing_status,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "symbol": self.symbol,
            "lastPrice": self.last_price,
            "volumeUSD": self.volume_usd,
            "oiUSD": self.open_interest_usd,
            "liqOI": self.liquidity_ratio,
            "rsi": self.indicators.rsi,
            "atrRel": self.indicators.atr_rel,
            "bbWidth": self.indicators.bb_width,
            "ema": self.indicators.ema,
            "volLastCandle": self.last_candle_volume_usd,
            "spreadPct": self.spread_pct,
            "liquidityScore": self.liquidity_score,
            "decision": self.decision.value,
            "score": self.score,
            "status": self.listing_status.value,
            "isAbandoned": self.listing_status == ListingStatus.ABANDONED,
            "timestamp": self.timestamp,
        }
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class TransferNetwork:
    symbol: str
    blockchain: str = "N/A"
    deposit_enabled: bool = False
    withdraw_enabled: bool = False
    withdrawal_fee: str = "-"
    min_withdraw: str = "-"
    max_withdraw: str = "-"
    min_deposit: str = "-"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "blockchain": self.blockchain,
            "depositEnabled": self.deposit_enabled,
            "withdrawEnabled": self.withdraw_enabled,
            "withdrawalFee": self.withdrawal_fee,
            "minWithdraw": self.min_withdraw,
            "maxWithdraw": self.max_withdraw,
            "minDeposit": self.min_deposit,
        }


@dataclass(frozen=True)
class CacheEntry:
    captured_at: float
    timeframe: str
    items: Tuple[Any, ...] = ()

    def age(self, now: float) -> float:
        return now - self.captured_at


class AssetEventType(str, Enum):
    NEW_ASSET = "new_asset"
    NEW_CHAIN = "new_chain"
    DEPOSIT_ENABLED = "deposit_enabled"


@dataclass(frozen=True)
class AssetEvent:
    kind: AssetEventType
    symbol: str
    blockchain: Optional[str] = None
    detected_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.kind.value,
            "symbol": self.symbol,
            "detectedAt": self.detected_at,
        }
        if self.blockchain is not None:
            payload["chain"] = self.blockchain
        return payload
