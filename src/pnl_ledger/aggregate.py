"""Aggregation engine: canonical events -> daily, monthly and trade-level rows.

Every derived table is written here and nowhere else.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from pnl_ledger.metrics.equity import (
    apply_effective_leverage,
    build_equity_curve,
    detect_drawdowns,
    running_totals,
)
from pnl_ledger.metrics.markets import compute_market_stats
from pnl_ledger.metrics.pnl import daily_metrics, monthly_metrics, net_pnl
from pnl_ledger.models import DailyPnl, MonthlyPnl
from pnl_ledger.reconstruct.funding import apply_funding_events
from pnl_ledger.reconstruct.trades import reconstruct_closed_trades
from pnl_ledger.storage import sqlite_reader as reader
from pnl_ledger.storage import sqlite_store as store

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000


@dataclass
class AggregationResult:
    days_total: int = 0
    days_processed: int = 0
    months_processed: int = 0
    closed_trades: int = 0
    equity_points: int = 0
    drawdowns: int = 0
    markets: int = 0
    skipped_days: list[date] = field(default_factory=list)


def aggregate_wallet(
    conn: sqlite3.Connection,
    wallet_id: int,
    *,
    days: Iterable[date] | None = None,
    initial_equity: float = 0.0,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> AggregationResult:
    """Rebuild aggregates for every day (``days=None``) or only the given days.

    A day whose events cannot be summed is logged and left out; the rest of
    the run continues.
    """
    result = AggregationResult()
    if days is None:
        store.delete_pnl_aggregates(conn, wallet_id)
        target_days = reader.load_event_days(conn, wallet_id)
    else:
        target_days = sorted(set(days))
    result.days_total = len(target_days)

    emptied: list[date] = []
    for day in target_days:
        try:
            row = _daily_row(conn, wallet_id, day, page_size)
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping day %s for wallet %d: %s", day.isoformat(), wallet_id, exc)
            result.skipped_days.append(day)
            continue
        if row is None:
            emptied.append(day)
        else:
            store.upsert_daily_pnl(conn, [row])
        result.days_processed += 1
    if emptied:
        store.delete_daily_pnl(conn, wallet_id, emptied)

    result.months_processed = _aggregate_months(conn, wallet_id, {_month_start(day) for day in target_days})
    _refresh_running_totals(conn, wallet_id)
    _rebuild_trade_views(conn, wallet_id, initial_equity, page_size, result)

    logger.info(
        "Aggregated wallet %d: %d/%d days, %d months, %d closed trades",
        wallet_id,
        result.days_processed,
        result.days_total,
        result.months_processed,
        result.closed_trades,
    )
    return result


def _daily_row(conn: sqlite3.Connection, wallet_id: int, day: date, page_size: int) -> DailyPnl | None:
    events = list(reader.iter_day_events(conn, wallet_id, day, page_size=page_size))
    if not events:
        return None
    metrics = daily_metrics(events)
    return DailyPnl(
        wallet_id=wallet_id,
        day=day,
        closed_pnl=metrics.closed_pnl,
        funding=metrics.funding_pnl,
        fees=metrics.fees,
        perps_pnl=metrics.realized_perps_pnl,
        total_pnl=net_pnl(metrics),
        volume=metrics.volume,
        trades_count=metrics.trades_count,
    )


def _aggregate_months(conn: sqlite3.Connection, wallet_id: int, months: set[date]) -> int:
    processed = 0
    emptied: list[date] = []
    for month in sorted(months):
        daily_rows = reader.load_daily_pnl(
            conn, wallet_id, start_day=month, end_day=_month_end(month)
        )
        if not daily_rows:
            emptied.append(month)
            continue
        metrics = monthly_metrics(daily_rows)
        store.upsert_monthly_pnl(
            conn,
            [
                MonthlyPnl(
                    wallet_id=wallet_id,
                    month=month,
                    total_pnl=metrics.total_pnl,
                    closed_pnl=metrics.closed_pnl,
                    funding=metrics.funding,
                    volume=metrics.volume,
                    trading_days=metrics.trading_days,
                    profitable_days=metrics.profitable_days,
                )
            ],
        )
        processed += 1
    if emptied:
        store.delete_monthly_pnl(conn, wallet_id, emptied)
    return processed


def _refresh_running_totals(conn: sqlite3.Connection, wallet_id: int) -> None:
    store.update_daily_running_totals(conn, wallet_id, running_totals(reader.load_daily_pnl(conn, wallet_id)))


def _rebuild_trade_views(
    conn: sqlite3.Connection,
    wallet_id: int,
    initial_equity: float,
    page_size: int,
    result: AggregationResult,
) -> None:
    daily_rows = reader.load_daily_pnl(conn, wallet_id)
    curve = build_equity_curve(daily_rows, initial_equity=initial_equity)

    trades = reconstruct_closed_trades(reader.load_fill_events(conn, wallet_id, page_size=page_size))
    apply_funding_events(trades, reader.load_funding_events(conn, wallet_id, page_size=page_size))
    apply_effective_leverage(trades, curve, fallback_equity=initial_equity)

    drawdowns = detect_drawdowns(curve)
    stats = compute_market_stats(wallet_id, trades)

    result.closed_trades = store.replace_closed_trades(conn, wallet_id, trades)
    result.equity_points = store.replace_equity_curve(conn, wallet_id, curve)
    result.drawdowns = store.replace_drawdown_events(conn, wallet_id, drawdowns)
    result.markets = store.replace_market_stats(conn, wallet_id, stats)


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _month_end(month: date) -> date:
    if month.month == 12:
        next_month = month.replace(year=month.year + 1, month=1)
    else:
        next_month = month.replace(month=month.month + 1)
    return date.fromordinal(next_month.toordinal() - 1)
