from __future__ import annotations

from datetime import date
from typing import Iterable

from pnl_ledger.models import ClosedTrade, DailyPnl, DrawdownEvent, EquityCurvePoint


def build_equity_curve(
    daily_rows: Iterable[DailyPnl], *, initial_equity: float = 0.0
) -> list[EquityCurvePoint]:
    """Walk the days in order, carrying equity, peak and running totals.

    Drawdown is measured from the running peak and is capped at the peak, so
    ``0 <= drawdown_pct <= 1`` even when equity goes below zero.
    """
    points: list[EquityCurvePoint] = []
    ending = float(initial_equity)
    peak = ending
    cum_trading = 0.0
    cum_funding = 0.0
    cum_fees = 0.0
    for row in sorted(daily_rows, key=lambda item: item.day):
        starting = ending
        trading = float(row.perps_pnl)
        funding = float(row.funding)
        fees = float(row.fees)
        net_change = trading + funding - fees
        ending = starting + net_change
        cum_trading += trading
        cum_funding += funding
        cum_fees += fees
        peak = max(peak, ending)
        drawdown, drawdown_pct = drawdown_from_peak(peak, ending)
        points.append(
            EquityCurvePoint(
                wallet_id=row.wallet_id,
                day=row.day,
                starting_equity=starting,
                ending_equity=ending,
                trading_pnl=trading,
                funding_pnl=funding,
                fees=fees,
                net_change=net_change,
                cumulative_trading_pnl=cum_trading,
                cumulative_funding_pnl=cum_funding,
                cumulative_fees=cum_fees,
                cumulative_net_pnl=cum_trading + cum_funding - cum_fees,
                peak_equity=peak,
                drawdown=drawdown,
                drawdown_pct=drawdown_pct,
            )
        )
    return points


def drawdown_from_peak(peak: float, equity: float) -> tuple[float, float]:
    if peak <= 0:
        return 0.0, 0.0
    drawdown = min(max(peak - equity, 0.0), peak)
    return drawdown, drawdown / peak


def running_totals(daily_rows: Iterable[DailyPnl]) -> list[tuple[date, float, float]]:
    """Cumulative closed PnL and drawdown from its running peak, per day."""
    totals: list[tuple[date, float, float]] = []
    cumulative = 0.0
    peak = 0.0
    for row in sorted(daily_rows, key=lambda item: item.day):
        cumulative += float(row.closed_pnl)
        peak = max(peak, cumulative)
        totals.append((row.day, cumulative, peak - cumulative))
    return totals


def detect_drawdowns(points: Iterable[EquityCurvePoint]) -> list[DrawdownEvent]:
    curve = sorted(points, key=lambda point: point.day)
    if len(curve) < 2:
        return []

    events: list[DrawdownEvent] = []
    wallet_id = curve[0].wallet_id
    peak = curve[0].ending_equity
    peak_day = curve[0].day
    trough = peak
    trough_day = peak_day
    in_drawdown = False

    for point in curve[1:]:
        equity = point.ending_equity
        if equity > peak:
            if in_drawdown and peak - trough > 0:
                events.append(
                    _drawdown_event(wallet_id, peak_day, trough_day, point.day, peak, trough)
                )
                in_drawdown = False
            peak = equity
            peak_day = point.day
            trough = equity
            trough_day = point.day
        elif equity < trough:
            trough = equity
            trough_day = point.day
            in_drawdown = True

    if in_drawdown and peak - trough > 0:
        events.append(_drawdown_event(wallet_id, peak_day, trough_day, None, peak, trough))
    return events


def _drawdown_event(
    wallet_id: int,
    peak_day: date,
    trough_day: date,
    recovery_day: date | None,
    peak: float,
    trough: float,
) -> DrawdownEvent:
    depth = peak - trough
    return DrawdownEvent(
        wallet_id=wallet_id,
        peak_date=peak_day,
        trough_date=trough_day,
        recovery_date=recovery_day,
        peak_equity=peak,
        trough_equity=trough,
        drawdown_depth=depth,
        drawdown_pct=min(depth / peak, 1.0) if peak > 0 else 0.0,
        recovery_days=(recovery_day - peak_day).days if recovery_day else None,
        is_recovered=recovery_day is not None,
    )


def apply_effective_leverage(
    trades: Iterable[ClosedTrade],
    points: Iterable[EquityCurvePoint],
    *,
    fallback_equity: float | None = None,
) -> None:
    """Set ``effective_leverage`` from the equity the wallet started the entry day with."""
    ordered_trades = sorted(trades, key=lambda trade: trade.entry_time)
    ordered_points = sorted(points, key=lambda point: point.day)
    if not ordered_trades:
        return
    idx = 0
    latest = None
    for trade in ordered_trades:
        entry_day = trade.entry_time.date()
        while idx < len(ordered_points) and ordered_points[idx].day <= entry_day:
            latest = ordered_points[idx]
            idx += 1
        if latest is not None and latest.day == entry_day:
            equity = latest.starting_equity
        elif latest is not None:
            equity = latest.ending_equity
        else:
            equity = fallback_equity
        if equity is None or equity <= 0:
            trade.effective_leverage = None
        else:
            trade.effective_leverage = trade.notional_value / equity
