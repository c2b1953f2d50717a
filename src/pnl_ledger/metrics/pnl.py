"""Metric definitions shared by every aggregate.

Every number the ledger persists is computed here from its inputs alone: no
clock reads, no randomness, no I/O. Recompute relies on this to be
idempotent.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from pnl_ledger.models import PERP_FILL, PERP_FUNDING, DailyPnl, EconomicEvent


@dataclass(frozen=True)
class DailyMetrics:
    realized_perps_pnl: float
    funding_pnl: float
    fees: float
    trades_count: int
    volume: float
    closed_pnl: float


@dataclass(frozen=True)
class MonthlyMetrics:
    total_pnl: float
    closed_pnl: float
    funding: float
    volume: float
    trading_days: int
    profitable_days: int


def is_trade(event: EconomicEvent) -> bool:
    return event.event_type == PERP_FILL


def is_funding(event: EconomicEvent) -> bool:
    return event.event_type == PERP_FUNDING


def fill_volume(event: EconomicEvent) -> float:
    if not is_trade(event):
        return 0.0
    return abs(_num(event.size)) * _num(event.exec_price)


def daily_metrics(events: Iterable[EconomicEvent]) -> DailyMetrics:
    """Sum one day's events.

    Fees are reported as a positive cost and are subtracted only when a net
    figure is formed (see ``net_pnl``); ``closed_pnl`` is realized perps PnL
    alone.
    """
    realized = 0.0
    funding = 0.0
    fees = 0.0
    trades = 0
    volume = 0.0
    for event in events:
        fees += _num(event.fee_usd)
        if is_trade(event):
            realized += _num(event.realized_pnl_usd)
            volume += fill_volume(event)
            trades += 1
        elif is_funding(event):
            funding += _num(event.funding_usd)
    return DailyMetrics(
        realized_perps_pnl=realized,
        funding_pnl=funding,
        fees=fees,
        trades_count=trades,
        volume=volume,
        closed_pnl=realized,
    )


def net_pnl(metrics: DailyMetrics) -> float:
    return metrics.realized_perps_pnl + metrics.funding_pnl - metrics.fees


def monthly_metrics(daily_rows: Iterable[DailyPnl]) -> MonthlyMetrics:
    total_pnl = 0.0
    closed_pnl = 0.0
    funding = 0.0
    volume = 0.0
    trading_days = 0
    profitable_days = 0
    for row in daily_rows:
        total_pnl += _num(row.total_pnl)
        closed_pnl += _num(row.closed_pnl)
        funding += _num(row.funding)
        volume += _num(row.volume)
        if is_trading_day(row.trades_count or 0):
            trading_days += 1
        if is_profitable_day(_num(row.closed_pnl)):
            profitable_days += 1
    return MonthlyMetrics(
        total_pnl=total_pnl,
        closed_pnl=closed_pnl,
        funding=funding,
        volume=volume,
        trading_days=trading_days,
        profitable_days=profitable_days,
    )


def is_profitable_day(closed_pnl: float) -> bool:
    return closed_pnl > 0


def is_trading_day(trades_count: int) -> bool:
    return trades_count > 0


def win_rate(wins: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return wins / total * 100.0


def _num(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"Invalid numeric value: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid numeric value: {value!r}") from exc
