"""Read-side views over the persisted aggregates."""
from __future__ import annotations

import sqlite3
from datetime import date, datetime, timezone
from typing import Any

from pnl_ledger.config.accounts import normalize_wallet
from pnl_ledger.errors import WalletNotFoundError
from pnl_ledger.metrics.pnl import fill_volume
from pnl_ledger.models import (
    PERP_FEE,
    PERP_FILL,
    PERP_FUNDING,
    ClosedTrade,
    DailyPnl,
    DrawdownEvent,
    EconomicEvent,
    EquityCurvePoint,
    MarketStats,
    MonthlyPnl,
    RecomputeRun,
    SyncRun,
    Wallet,
)
from pnl_ledger.storage import sqlite_reader as reader
from pnl_ledger.storage.sqlite_store import get_or_create_wallet

PROGRESS_KINDS = ("sync", "recompute")


def calendar(
    conn: sqlite3.Connection,
    wallet: str,
    *,
    year: int,
    view: str = "total",
    product: str = "all",
    tz: str = "utc",
    page_size: int = reader.DEFAULT_PAGE_SIZE,
) -> dict[str, Any]:
    """Daily and monthly PnL for one calendar year.

    The wallet is created on first lookup so a later sync has somewhere to
    land. ``view``, ``product`` and ``tz`` are echoed back in ``meta``.
    """
    address = normalize_wallet(wallet)
    record = get_or_create_wallet(conn, address)
    start = date(year, 1, 1)
    end = date(year, 12, 31)

    daily = reader.load_daily_pnl(conn, record.wallet_id, start_day=start, end_day=end)
    monthly = reader.load_monthly_pnl(conn, record.wallet_id, start_month=start, end_month=end)

    total_volume = 0.0
    for event in reader.iter_events(
        conn, record.wallet_id, event_type=PERP_FILL, start_day=start, end_day=end, page_size=page_size
    ):
        total_volume += fill_volume(event)

    closed_trades_count = reader.count_closed_trades(
        conn,
        record.wallet_id,
        start=datetime(year, 1, 1, tzinfo=timezone.utc),
        end=datetime(year + 1, 1, 1, tzinfo=timezone.utc),
    )
    return {
        "year": year,
        "wallet": address,
        "daily": [daily_row(row) for row in daily],
        "monthly_summary": [monthly_row(row) for row in monthly],
        "total_volume": total_volume,
        "closed_trades_count": closed_trades_count,
        "meta": {
            "view": view,
            "product": product,
            "tz": tz,
            "last_updated_at": datetime.now(timezone.utc).isoformat(),
        },
    }


def progress(conn: sqlite3.Connection, wallet: str, kind: str = "sync") -> dict[str, Any]:
    if kind not in PROGRESS_KINDS:
        raise ValueError(f"Unknown run kind: {kind!r}")
    record = require_wallet(conn, wallet)
    if kind == "sync":
        run: SyncRun | RecomputeRun | None = reader.load_latest_sync_run(conn, record.wallet_id)
    else:
        run = reader.load_latest_recompute_run(conn, record.wallet_id)
    return {"wallet": record.address, "kind": kind, "run": run_row(run) if run else None}


def day_detail(
    conn: sqlite3.Connection, wallet: str, day: date, *, page_size: int = reader.DEFAULT_PAGE_SIZE
) -> dict[str, Any]:
    """One day's fills, funding and fee events plus its stored daily summary."""
    record = require_wallet(conn, wallet)
    fills: list[dict[str, Any]] = []
    funding: list[dict[str, Any]] = []
    events_count = 0
    for event in reader.iter_day_events(conn, record.wallet_id, day, page_size=page_size):
        events_count += 1
        if event.event_type == PERP_FILL:
            fills.append(fill_row(event))
        elif event.event_type in (PERP_FUNDING, PERP_FEE):
            funding.append(funding_row(event))
    daily = reader.load_daily_pnl(conn, record.wallet_id, start_day=day, end_day=day)
    return {
        "date": day.isoformat(),
        "wallet": record.address,
        "summary": daily_row(daily[0]) if daily else None,
        "perps_fills": fills,
        "funding": funding,
        "meta": {"events_count": events_count},
    }


def summary(conn: sqlite3.Connection, wallet: str) -> dict[str, Any]:
    """Headline numbers over the wallet's whole history."""
    record = require_wallet(conn, wallet)
    curve = reader.load_equity_curve(conn, record.wallet_id)
    stats = reader.load_market_stats(conn, record.wallet_id)
    drawdowns = reader.load_drawdown_events(conn, record.wallet_id)

    latest = curve[-1] if curve else None
    trading = latest.cumulative_trading_pnl if latest else 0.0
    funding = latest.cumulative_funding_pnl if latest else 0.0
    fees = latest.cumulative_fees if latest else 0.0
    net = trading + funding - fees
    total_trades = sum(item.total_trades for item in stats)
    wins = sum(item.wins for item in stats)
    recoveries = [event.recovery_days for event in drawdowns if event.is_recovered and event.recovery_days]
    return {
        "wallet": record.address,
        "total_trading_pnl": trading,
        "total_funding_pnl": funding,
        "total_fees": fees,
        "net_pnl": latest.cumulative_net_pnl if latest else 0.0,
        "funding_share": funding / net if net else 0.0,
        "total_trades": total_trades,
        "win_rate": wins / total_trades if total_trades else 0.0,
        "max_drawdown": max((event.drawdown_depth for event in drawdowns), default=0.0),
        "avg_recovery_days": sum(recoveries) / len(recoveries) if recoveries else 0.0,
        "markets_traded": len(stats),
    }


def require_wallet(conn: sqlite3.Connection, wallet: str) -> Wallet:
    address = normalize_wallet(wallet)
    record = reader.find_wallet(conn, address)
    if record is None:
        raise WalletNotFoundError(address)
    return record


def daily_row(row: DailyPnl) -> dict[str, Any]:
    return {
        "date": row.day.isoformat(),
        "pnl": row.closed_pnl,
        "funding": row.funding,
        "fees": row.fees,
        "perps_pnl": row.perps_pnl,
        "total_pnl": row.total_pnl,
        "volume": row.volume,
        "trades_count": row.trades_count,
        "cumulative_pnl": row.cumulative_pnl,
        "drawdown": row.drawdown,
    }


def monthly_row(row: MonthlyPnl) -> dict[str, Any]:
    return {
        "month": row.month.strftime("%Y-%m"),
        "pnl": row.closed_pnl,
        "total_pnl": row.total_pnl,
        "funding": row.funding,
        "volume": row.volume,
        "profitable_days": row.profitable_days,
        "trading_days": row.trading_days,
    }


def run_row(run: SyncRun | RecomputeRun) -> dict[str, Any]:
    return dict(vars(run))


def trade_row(trade: ClosedTrade) -> dict[str, Any]:
    return {
        "market": trade.market,
        "side": trade.side,
        "entry_time": trade.entry_time.isoformat(),
        "exit_time": trade.exit_time.isoformat(),
        "avg_entry_price": trade.avg_entry_price,
        "avg_exit_price": trade.avg_exit_price,
        "size": trade.size,
        "notional_value": trade.notional_value,
        "effective_leverage": trade.effective_leverage,
        "realized_pnl": trade.realized_pnl,
        "fees": trade.fees,
        "funding": trade.funding,
        "net_pnl": trade.net_pnl,
        "is_win": trade.is_win,
        "trade_duration_hours": trade.duration_hours,
    }


def equity_row(point: EquityCurvePoint) -> dict[str, Any]:
    values = dict(vars(point))
    values.pop("wallet_id")
    values["day"] = point.day.isoformat()
    return values


def drawdown_row(event: DrawdownEvent) -> dict[str, Any]:
    values = dict(vars(event))
    values.pop("wallet_id")
    values["peak_date"] = event.peak_date.isoformat()
    values["trough_date"] = event.trough_date.isoformat()
    values["recovery_date"] = event.recovery_date.isoformat() if event.recovery_date else None
    return values


def market_row(stats: MarketStats) -> dict[str, Any]:
    values = dict(vars(stats))
    values.pop("wallet_id")
    return values


def fill_row(event: EconomicEvent) -> dict[str, Any]:
    return {
        "id": event.event_id,
        "timestamp": event.ts.isoformat(),
        "market": event.market,
        "side": event.side,
        "size": event.size or 0.0,
        "exec_price": event.exec_price or 0.0,
        "realized_pnl": event.realized_pnl_usd or 0.0,
        "fee": event.fee_usd or 0.0,
        "tx_hash": event.tx_hash,
    }


def funding_row(event: EconomicEvent) -> dict[str, Any]:
    amount = event.funding_usd if event.event_type == PERP_FUNDING else event.fee_usd
    return {
        "id": event.event_id,
        "timestamp": event.ts.isoformat(),
        "type": event.event_type,
        "market": event.market,
        "amount": amount or 0.0,
    }
