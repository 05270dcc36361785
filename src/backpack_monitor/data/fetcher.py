"""Backpack REST client and the parsing boundary for its responses."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from backpack_monitor.core.config import ExchangeConfig
from backpack_monitor.core.models import Candle, MarketInfo, Ticker, Trade, TransferNetwork
from backpack_monitor.data.provider_base import MarketDataSource

logger = logging.getLogger(__name__)


class BackpackAPIError(RuntimeError):
    """Raised when an exchange endpoint cannot be fetched or decoded."""

    def __init__(self, path: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.status_code = status_code


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class BackpackClient(MarketDataSource):
    """Retrieve markets, tickers, candles and trades from the Backpack public API."""

    def __init__(self, config: ExchangeConfig, client: httpx.AsyncClient | None = None) -> None:
        self._cfg = config
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url, timeout=config.timeout_seconds
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential(multiplier=self._cfg.retry_backoff_seconds, max=8),
            stop=stop_after_attempt(self._cfg.retry_attempts),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )

    async def _get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.get(path, params=params)
                    response.raise_for_status()
                    return response.json()
        except httpx.HTTPStatusError as exc:
            raise BackpackAPIError(
                path, f"HTTP {exc.response.status_code}", exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            raise BackpackAPIError(path, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise BackpackAPIError(path, f"invalid JSON: {exc}") from exc
        raise BackpackAPIError(path, "retries exhausted")

    async def fetch_markets(self) -> List[MarketInfo]:
        raw = await self._get("/markets")
        return [_parse_market(item) for item in _as_list(raw) if item.get("symbol")]

    async def fetch_open_interest(self) -> Dict[str, float]:
        raw = await self._get("/openInterest")
        out: Dict[str, float] = {}
        for item in _as_list(raw):
            symbol = item.get("symbol")
            if symbol:
                out[symbol] = _to_float(item.get("openInterest"))
        return out

    async def fetch_ticker(self, symbol: str) -> Optional[Ticker]:
        raw = await self._get("/ticker", params={"symbol": symbol})
        items = _as_list(raw)
        if not items:
            return None
        return _parse_ticker(symbol, items[0])

    async def fetch_klines(
        self, symbol: str, interval: str, start_time: int, end_time: int
    ) -> List[Candle]:
        params = {
            "symbol": symbol,
            "interval": interval,
            "startTime": start_time,
            "endTime": end_time,
        }
        raw = await self._get("/klines", params=params)
        candles: List[Candle] = []
        for item in _as_list(raw):
            candle = _parse_kline(item)
            if candle is not None:
                candles.append(candle)
        return candles

    async def fetch_trades(self, symbol: str, limit: int) -> List[Trade]:
        raw = await self._get("/trades", params={"symbol": symbol, "limit": limit})
        trades: List[Trade] = []
        for item in _as_list(raw):
            timestamp = _to_epoch_seconds(item.get("timestamp"))
            price = _to_float(item.get("price"))
            if timestamp is None or price <= 0:
                continue
            trades.append(
                Trade(timestamp=timestamp, price=price, quantity=_to_float(item.get("quantity")))
            )
        trades.sort(key=lambda t: t.timestamp)
        return trades

    async def fetch_assets(self) -> List[TransferNetwork]:
        raw = await self._get("/assets")
        networks: List[TransferNetwork] = []
        for asset in _as_list(raw):
            symbol = str(asset.get("symbol") or "").upper()
            tokens = asset.get("tokens") or []
            if not symbol or not isinstance(tokens, list):
                continue
            for token in tokens:
                networks.append(
                    TransferNetwork(
                        symbol=symbol,
                        blockchain=token.get("blockchain") or "N/A",
                        deposit_enabled=bool(token.get("depositEnabled")),
                        withdraw_enabled=bool(token.get("withdrawEnabled")),
                        withdrawal_fee=str(token.get("withdrawalFee") or "-"),
                        min_withdraw=str(token.get("minimumWithdrawal") or "-"),
                        max_withdraw=str(token.get("maximumWithdrawal") or "-"),
                        min_deposit=str(token.get("minimumDeposit") or "-"),
                    )
                )
        return networks

    async def close(self) -> None:
        await self._client.aclose()


def _as_list(raw: Any) -> List[Dict[str, Any]]:
    """The exchange answers some endpoints with a bare object, others with an array."""
    if isinstance(raw, list):
        return [item for item in raw if isinstance(item, dict)]
    if isinstance(raw, dict):
        return [raw]
    return []


def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


def _to_epoch_seconds(value: Any) -> Optional[int]:
    """Accept epoch seconds, epoch milliseconds or an ISO-like datetime string."""
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = None
    if number is not None:
        if not math.isfinite(number):
            return None
        if number > 1e12:
            number /= 1000
        return int(number)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp())
    return None


def _parse_market(item: Mapping[str, Any]) -> MarketInfo:
    return MarketInfo(
        symbol=str(item["symbol"]),
        visible=_to_bool(item.get("visible", True)),
        order_book_state=str(item.get("orderBookState") or "Open"),
        created_at=item.get("createdAt"),
        market_type=item.get("marketType"),
    )


def _parse_ticker(symbol: str, item: Mapping[str, Any]) -> Ticker:
    bid = item.get("bestBid", item.get("bid"))
    ask = item.get("bestAsk", item.get("ask"))
    return Ticker(
        symbol=symbol,
        last_price=_to_float(item.get("lastPrice")),
        volume=_to_float(item.get("volume")),
        bid=_to_float(bid) if bid is not None else None,
        ask=_to_float(ask) if ask is not None else None,
    )


def _parse_kline(item: Mapping[str, Any]) -> Optional[Candle]:
    open_time = _to_epoch_seconds(item.get("openTime", item.get("start")))
    if open_time is None:
        return None
    return Candle(
        open_time=open_time,
        open=_to_float(item.get("open")),
        high=_to_float(item.get("high")),
        low=_to_float(item.get("low")),
        close=_to_float(item.get("close")),
        volume=_to_float(item.get("volume")),
    )
