"""Console logging and snapshot tables using Rich."""

from __future__ import annotations

import logging
from typing import Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from backpack_monitor.core.models import Decision, MarketSnapshot, TransferNetwork


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(name)s - %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


class SnapshotReporter:
    _DECISION_STYLES = {
        Decision.LONG: "green",
        Decision.SHORT: "red",
        Decision.LATERAL: "blue",
        Decision.NEUTRAL: "white",
        Decision.PENDING: "dim",
    }

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    def render_markets(self, title: str, snapshots: Sequence[MarketSnapshot]) -> Table:
        table = Table(title=title, show_lines=False)
        for column in ("#", "Symbol", "Price", "ATR%", "BB Width", "RSI", "Volume", "OI", "Decision", "Score"):
            table.add_column(column, justify="left" if column in {"Symbol", "Decision"} else "right")
        for idx, snap in enumerate(snapshots, start=1):
            style = self._DECISION_STYLES.get(snap.decision, "white")
            badge = "" if snap.listing_status.value == "normal" else f" [{snap.listing_status.value}]"
            table.add_row(
                str(idx),
                escape(f"{snap.symbol}{badge}"),
                f"{snap.last_price:.4f}" if snap.last_price else "-",
                f"{snap.indicators.atr_rel * 100:.3f}%" if snap.indicators.atr_rel else "-",
                f"{snap.indicators.bb_width:.4f}" if snap.indicators.bb_width else "-",
                f"{snap.indicators.rsi:.1f}" if snap.indicators.rsi else "-",
                f"${snap.volume_usd:,.0f}",
                f"${snap.open_interest_usd:,.0f}",
                f"[{style}]{snap.decision.value.upper()}[/{style}]",
                str(snap.score),
            )
        return table

    def render_transfers(self, networks: Sequence[TransferNetwork]) -> Table:
        table = Table(title="Deposits / Withdrawals")
        for column in ("Symbol", "Blockchain", "Deposit", "Withdraw", "Fee", "Min Withdraw"):
            table.add_column(column)
        for net in networks:
            table.add_row(
                net.symbol,
                net.blockchain,
                "yes" if net.deposit_enabled else "no",
                "yes" if net.withdraw_enabled else "no",
                net.withdrawal_fee,
                net.min_withdraw,
            )
        return table

    def print_markets(self, title: str, snapshots: Sequence[MarketSnapshot]) -> None:
        self._console.print(self.render_markets(title, snapshots))

    def print_transfers(self, networks: Sequence[TransferNetwork]) -> None:
        self._console.print(self.render_transfers(networks))
