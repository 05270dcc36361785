"""
HTTP API serving cached market snapshots to the dashboard.

Endpoints:
    GET /api/data?tf=3m                 perpetual snapshots
    GET /api/spot?tf=3m                 spot snapshots
    GET /api/transfer                   deposit/withdraw status per network
    GET /api/transfer/events            recent listing changes from the asset watch
    GET /api/snapshot/{market_class}    any partition by market class
    GET /health                         cached partitions and their age
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from backpack_monitor import __version__
from backpack_monitor.core.config import Config
from backpack_monitor.core.models import MarketClass
from backpack_monitor.core.timeframes import UnsupportedTimeframeError, validate_timeframe
from backpack_monitor.data.fetcher import BackpackClient
from backpack_monitor.data.provider_base import MarketDataSource, SystemTimeProvider, TimeProvider
from backpack_monitor.scheduler.cache import NO_TIMEFRAME, RefreshCache
from backpack_monitor.scheduler.tasks import (
    AssetWatcher,
    BackgroundRefresher,
    build_cache,
    warm_partitions,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _cache(request: Request) -> RefreshCache:
    return request.app.state.cache


async def _read(request: Request, market_class: MarketClass, tf: Optional[str]) -> list[dict[str, Any]]:
    timeframe = NO_TIMEFRAME
    if market_class != MarketClass.TRANSFER:
        timeframe = tf or request.app.state.config.data.default_timeframe
        try:
            validate_timeframe(timeframe)
        except UnsupportedTimeframeError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    items = await _cache(request).get(market_class, timeframe)
    return [item.to_dict() for item in items]


@router.get("/api/data")
async def perp_snapshots(request: Request, tf: Optional[str] = Query(None)):
    return await _read(request, MarketClass.PERP, tf)


@router.get("/api/spot")
async def spot_snapshots(request: Request, tf: Optional[str] = Query(None)):
    return await _read(request, MarketClass.SPOT, tf)


@router.get("/api/transfer")
async def transfer_networks(request: Request):
    return await _read(request, MarketClass.TRANSFER, None)


@router.get("/api/transfer/events")
async def asset_events(request: Request):
    watcher: Optional[AssetWatcher] = request.app.state.asset_watcher
    if watcher is None:
        return []
    return [event.to_dict() for event in reversed(watcher.recent_events)]


@router.get("/api/snapshot/{market_class}")
async def partition_snapshots(
    request: Request, market_class: MarketClass, tf: Optional[str] = Query(None)
):
    return await _read(request, market_class, tf)


@router.get("/health")
async def health(request: Request):
    cache = _cache(request)
    now = request.app.state.time_provider.now()
    partitions = []
    for (market_class, timeframe), entry in sorted(
        cache.entries().items(), key=lambda kv: (kv[0][0].value, kv[0][1])
    ):
        partitions.append(
            {
                "marketClass": market_class.value,
                "timeframe": timeframe,
                "items": len(entry.items),
                "capturedAt": entry.captured_at,
                "ageSeconds": round(entry.age(now), 3),
                "fresh": cache.is_fresh(entry),
            }
        )
    refresher: Optional[BackgroundRefresher] = request.app.state.refresher
    watcher: Optional[AssetWatcher] = request.app.state.asset_watcher
    return {
        "status": "ok",
        "version": __version__,
        "ttlSeconds": cache.ttl_seconds,
        "backgroundRefresh": bool(refresher and refresher.running),
        "assetWatch": bool(watcher and watcher.running),
        "partitions": partitions,
    }


def create_app(
    config: Config | None = None,
    source: MarketDataSource | None = None,
    time_provider: TimeProvider | None = None,
) -> FastAPI:
    config = config or Config.load()
    owns_source = source is None
    source = source or BackpackClient(config.exchange)
    time_provider = time_provider or SystemTimeProvider()
    cache = build_cache(config, source, time_provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        refresher: Optional[BackgroundRefresher] = None
        if config.cache.background_refresh:
            refresher = BackgroundRefresher(
                cache,
                warm_partitions(config.cache.warm_timeframes),
                config.cache.refresh_interval_seconds,
            )
            await refresher.start()
            logger.info(
                "Background refresh every %ss for %s",
                config.cache.refresh_interval_seconds,
                ", ".join(config.cache.warm_timeframes),
            )
        app.state.refresher = refresher

        watcher: Optional[AssetWatcher] = None
        if config.assets.enabled:
            watcher = AssetWatcher(
                source,
                config.assets.interval_seconds,
                config.assets.history,
                time_provider,
            )
            await watcher.start()
        app.state.asset_watcher = watcher
        yield
        if refresher is not None:
            await refresher.stop()
        if watcher is not None:
            await watcher.stop()
        if owns_source and isinstance(source, BackpackClient):
            await source.close()
        logger.info("Market monitor stopped")

    app = FastAPI(
        title="Backpack Market Monitor",
        description="Cached RSI/ATR/Bollinger/EMA snapshots for Backpack perpetual and spot markets.",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.state.config = config
    app.state.cache = cache
    app.state.time_provider = time_provider
    app.state.refresher = None
    app.state.asset_watcher = None
    app.include_router(router)
    return app
