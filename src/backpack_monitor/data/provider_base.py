from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from backpack_monitor.core.models import Candle, MarketInfo, Ticker, Trade, TransferNetwork


class CandleSource(ABC):
    @abstractmethod
    async def fetch_klines(
        self, symbol: str, interval: str, start_time: int, end_time: int
    ) -> List[Candle]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_trades(self, symbol: str, limit: int) -> List[Trade]:
        raise NotImplementedError


class MarketDataSource(CandleSource):
    @abstractmethod
    async def fetch_markets(self) -> List[MarketInfo]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_open_interest(self) -> Dict[str, float]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_ticker(self, symbol: str) -> Optional[Ticker]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_assets(self) -> List[TransferNetwork]:
        raise NotImplementedError


class TimeProvider(ABC):
    @abstractmethod
    def now(self) -> float:
        """Current time in epoch seconds."""
        raise NotImplementedError


class SystemTimeProvider(TimeProvider):
    def now(self) -> float:
        return time.time()
