"""Entry point for the HTTP service or one-off console snapshots."""

from __future__ import annotations

import argparse
import asyncio

from backpack_monitor.core.config import Config
from backpack_monitor.core.models import MarketClass
from backpack_monitor.core.timeframes import TIMEFRAME_SECONDS
from backpack_monitor.data.fetcher import BackpackClient
from backpack_monitor.monitoring.logger import SnapshotReporter, setup_logging
from backpack_monitor.scheduler.builder import SnapshotBuilder


async def run_snapshot(config: Config, market_class: MarketClass, timeframe: str) -> list:
    client = BackpackClient(config.exchange)
    try:
        builder = SnapshotBuilder(config, client)
        return await builder.build(market_class, timeframe)
    finally:
        await client.close()


def serve(config: Config, host: str | None, port: int | None) -> None:
    import uvicorn

    from backpack_monitor.api.app import create_app

    uvicorn.run(
        create_app(config),
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=config.server.log_level.lower(),
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backpack market monitor")
    parser.add_argument("--config", type=str, help="Path to YAML config", default=None)
    sub = parser.add_subparsers(dest="command")

    serve_cmd = sub.add_parser("serve", help="Run the HTTP API")
    serve_cmd.add_argument("--host", type=str, default=None)
    serve_cmd.add_argument("--port", type=int, default=None)
    serve_cmd.add_argument(
        "--background-refresh",
        action="store_true",
        help="Keep the default partitions warm instead of refreshing on demand",
    )
    serve_cmd.add_argument(
        "--watch-assets",
        action="store_true",
        help="Poll /assets and log new assets, chains and re-enabled deposits",
    )

    snap_cmd = sub.add_parser("snapshot", help="Build one snapshot and print it")
    snap_cmd.add_argument(
        "--market", choices=[m.value for m in MarketClass], default=MarketClass.PERP.value
    )
    snap_cmd.add_argument("--tf", choices=list(TIMEFRAME_SECONDS), default=None)
    return parser.parse_args(argv)


def cli(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    cfg = Config.load(args.config)
    setup_logging(cfg.server.log_level)

    if args.command == "snapshot":
        market_class = MarketClass(args.market)
        timeframe = args.tf or cfg.data.default_timeframe
        items = asyncio.run(run_snapshot(cfg, market_class, timeframe))
        reporter = SnapshotReporter()
        if market_class == MarketClass.TRANSFER:
            reporter.print_transfers(items)
        else:
            reporter.print_markets(f"{market_class.value.upper()} {timeframe}", items)
        return

    if getattr(args, "background_refresh", False):
        cfg.cache.background_refresh = True
    if getattr(args, "watch_assets", False):
        cfg.assets.enabled = True
    serve(cfg, getattr(args, "host", None), getattr(args, "port", None))


if __name__ == "__main__":
    cli()
