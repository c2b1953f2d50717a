from __future__ import annotations

import argparse
import json
import sqlite3
from collections import defaultdict
from datetime import date
from pathlib import Path
from typing import Any

from pnl_ledger.config.accounts import resolve_wallet
from pnl_ledger.config.app_config import load_app_config
from pnl_ledger.metrics.pnl import daily_metrics, fill_volume
from pnl_ledger.models import ClosedTrade, DailyPnl, EquityCurvePoint, MonthlyPnl
from pnl_ledger.reconstruct.funding import apply_funding_events
from pnl_ledger.reconstruct.trades import reconstruct_closed_trades
from pnl_ledger.storage import sqlite_reader

DEFAULT_TOLERANCE = 1e-6


def main(argv: list[str] | None = None) -> int:
    app_config = load_app_config()
    parser = argparse.ArgumentParser(description="Check a wallet's stored aggregates against its event log.")
    parser.add_argument("--db", type=Path, default=app_config.app.db_path, help="SQLite DB path.")
    parser.add_argument("--wallet", type=str, default=None, help="Wallet address or account name.")
    parser.add_argument("--out", type=Path, default=Path("data/verify_report.json"), help="Output file.")
    parser.add_argument("--strict", action="store_true", help="Exit non-zero if critical issues found.")
    parser.add_argument("--tolerance", type=float, default=DEFAULT_TOLERANCE, help="Absolute tolerance for sums.")
    args = parser.parse_args(argv)

    wallet = resolve_wallet(args.wallet)
    conn = sqlite_reader.connect(args.db)
    try:
        record = sqlite_reader.find_wallet(conn, wallet.address)
        if record is None:
            print(f"Wallet not found: {wallet.address}")
            return 1
        report = run_checks(conn, record.wallet_id, tolerance=args.tolerance)
    finally:
        conn.close()

    args.out.parent.mkdir(parents=True, exist_ok=True)
    args.out.write_text(json.dumps(report, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    _print_summary(report)

    if args.strict and report["summary"]["critical"] > 0:
        return 1
    return 0


def run_checks(
    conn: sqlite3.Connection, wallet_id: int, *, tolerance: float = DEFAULT_TOLERANCE
) -> dict[str, Any]:
    daily = sqlite_reader.load_daily_pnl(conn, wallet_id)
    monthly = sqlite_reader.load_monthly_pnl(conn, wallet_id)
    curve = sqlite_reader.load_equity_curve(conn, wallet_id)
    trades = sqlite_reader.load_closed_trades(conn, wallet_id)

    daily_issues = _check_daily(conn, wallet_id, daily, tolerance)
    monthly_issues = _check_monthly(daily, monthly, tolerance)
    equity_issues = _check_equity(curve, tolerance)
    trade_issues = _check_trades(trades)
    event_issues = _check_events(conn, wallet_id)
    funding_unmatched = _unmatched_funding(conn, wallet_id)

    sections = (daily_issues, monthly_issues, equity_issues, trade_issues, event_issues)
    return {
        "summary": {
            "days": len(daily),
            "months": len(monthly),
            "equity_points": len(curve),
            "closed_trades": len(trades),
            "critical": sum(len(section["critical"]) for section in sections),
            "warning": sum(len(section["warning"]) for section in sections),
        },
        "daily": daily_issues,
        "monthly": monthly_issues,
        "equity": equity_issues,
        "trades": trade_issues,
        "events": event_issues,
        "funding_unmatched": funding_unmatched,
    }


def _check_daily(
    conn: sqlite3.Connection, wallet_id: int, daily: list[DailyPnl], tolerance: float
) -> dict[str, list[dict[str, Any]]]:
    critical: list[dict[str, Any]] = []
    warning: list[dict[str, Any]] = []
    for row in daily:
        if row.volume < 0:
            critical.append(_day_issue(row.day, "negative_volume", row.volume))
        events = list(sqlite_reader.iter_day_events(conn, wallet_id, row.day))
        if not events:
            warning.append(_day_issue(row.day, "day_without_events", None))
            continue
        try:
            metrics = daily_metrics(events)
        except ValueError as exc:
            warning.append(_day_issue(row.day, "unreadable_events", str(exc)))
            continue
        expected_volume = sum(fill_volume(event) for event in events)
        if abs(metrics.closed_pnl - row.closed_pnl) > tolerance:
            critical.append(_day_issue(row.day, "closed_pnl_mismatch", row.closed_pnl - metrics.closed_pnl))
        if abs(expected_volume - row.volume) > tolerance:
            critical.append(_day_issue(row.day, "volume_mismatch", row.volume - expected_volume))
        if metrics.trades_count != row.trades_count:
            critical.append(_day_issue(row.day, "trades_count_mismatch", row.trades_count - metrics.trades_count))
    return {"critical": critical, "warning": warning}


def _check_monthly(
    daily: list[DailyPnl], monthly: list[MonthlyPnl], tolerance: float
) -> dict[str, list[dict[str, Any]]]:
    critical: list[dict[str, Any]] = []
    warning: list[dict[str, Any]] = []
    sums: dict[date, float] = defaultdict(float)
    for row in daily:
        sums[row.day.replace(day=1)] += row.closed_pnl
    seen: set[date] = set()
    for row in monthly:
        seen.add(row.month)
        if row.month not in sums:
            warning.append({"month": row.month.isoformat(), "issue": "month_without_days"})
            continue
        delta = row.closed_pnl - sums[row.month]
        if abs(delta) > tolerance:
            critical.append({"month": row.month.isoformat(), "issue": "month_not_additive", "delta": delta})
    for month in sorted(set(sums) - seen):
        critical.append({"month": month.isoformat(), "issue": "missing_month"})
    return {"critical": critical, "warning": warning}


def _check_equity(curve: list[EquityCurvePoint], tolerance: float) -> dict[str, list[dict[str, Any]]]:
    critical: list[dict[str, Any]] = []
    warning: list[dict[str, Any]] = []
    previous: EquityCurvePoint | None = None
    for point in curve:
        if not 0.0 <= point.drawdown_pct <= 1.0:
            critical.append(_day_issue(point.day, "drawdown_pct_out_of_bounds", point.drawdown_pct))
        if point.drawdown > point.peak_equity + tolerance and point.peak_equity > 0:
            critical.append(_day_issue(point.day, "drawdown_exceeds_peak", point.drawdown))
        if previous is not None and abs(point.starting_equity - previous.ending_equity) > tolerance:
            critical.append(_day_issue(point.day, "equity_gap", point.starting_equity - previous.ending_equity))
        if point.ending_equity < 0:
            warning.append(_day_issue(point.day, "negative_equity", point.ending_equity))
        previous = point
    return {"critical": critical, "warning": warning}


def _check_trades(trades: list[ClosedTrade]) -> dict[str, list[dict[str, Any]]]:
    critical: list[dict[str, Any]] = []
    warning: list[dict[str, Any]] = []
    for trade in trades:
        if trade.size <= 0:
            critical.append(_trade_issue(trade, "zero_size_trade"))
        if trade.entry_time > trade.exit_time:
            critical.append(_trade_issue(trade, "negative_duration"))
        if trade.avg_entry_price <= 0 or trade.avg_exit_price <= 0:
            warning.append(_trade_issue(trade, "non_positive_price"))
    return {"critical": critical, "warning": warning}


def _check_events(conn: sqlite3.Connection, wallet_id: int) -> dict[str, list[dict[str, Any]]]:
    critical: list[dict[str, Any]] = []
    warning: list[dict[str, Any]] = []
    rows = conn.execute(
        """
        SELECT raw_event_id, COUNT(*) AS total FROM economic_events
        WHERE wallet_id = ? AND raw_event_id IS NOT NULL
        GROUP BY raw_event_id HAVING COUNT(*) > 1
        """,
        (wallet_id,),
    ).fetchall()
    for row in rows:
        critical.append({"raw_event_id": row["raw_event_id"], "issue": "duplicate_derived_event", "count": row["total"]})
    orphan = conn.execute(
        "SELECT COUNT(*) AS total FROM economic_events WHERE wallet_id = ? AND raw_event_id IS NULL",
        (wallet_id,),
    ).fetchone()
    if orphan["total"]:
        warning.append({"issue": "event_without_raw_event", "count": orphan["total"]})
    return {"critical": critical, "warning": warning}


def _unmatched_funding(conn: sqlite3.Connection, wallet_id: int) -> list[dict[str, Any]]:
    trades = reconstruct_closed_trades(sqlite_reader.load_fill_events(conn, wallet_id))
    attributions = apply_funding_events(trades, sqlite_reader.load_funding_events(conn, wallet_id))
    return [
        {
            "market": item.event.market,
            "time": item.event.ts.isoformat(),
            "funding_usd": item.event.funding_usd,
            "position_size": (item.event.meta or {}).get("position_size"),
        }
        for item in attributions
        if item.matched is None
    ]


def _day_issue(day: date, issue: str, value: Any) -> dict[str, Any]:
    return {"day": day.isoformat(), "issue": issue, "value": value}


def _trade_issue(trade: ClosedTrade, issue: str) -> dict[str, Any]:
    return {
        "market": trade.market,
        "side": trade.side,
        "entry_time": trade.entry_time.isoformat(),
        "exit_time": trade.exit_time.isoformat(),
        "issue": issue,
    }


def _print_summary(report: dict[str, Any]) -> None:
    summary = report["summary"]
    print(f"days {summary['days']}")
    print(f"months {summary['months']}")
    print(f"equity_points {summary['equity_points']}")
    print(f"closed_trades {summary['closed_trades']}")
    print(f"critical {summary['critical']}")
    print(f"warning {summary['warning']}")
    for section in ("daily", "monthly", "equity", "trades", "events"):
        print(f"{section}_critical {len(report[section]['critical'])}")
        print(f"{section}_warning {len(report[section]['warning'])}")
    print(f"funding_unmatched {len(report['funding_unmatched'])}")


if __name__ == "__main__":
    raise SystemExit(main())
