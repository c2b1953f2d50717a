from __future__ import annotations

import argparse
import logging
import sqlite3
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from pnl_ledger.aggregate import aggregate_wallet
from pnl_ledger.config.accounts import normalize_wallet, resolve_wallet
from pnl_ledger.config.app_config import configure_logging, load_app_config
from pnl_ledger.errors import WalletNotFoundError
from pnl_ledger.ledger import rederive_days
from pnl_ledger.models import STATUS_COMPLETED, STATUS_FAILED, RecomputeRun
from pnl_ledger.storage import sqlite_reader as reader
from pnl_ledger.storage.sqlite_store import (
    connect,
    init_db,
    start_run,
    update_recompute_run,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_STALE_RUN_MINUTES = 30


def main(argv: list[str] | None = None) -> int:
    app_config = load_app_config()
    parser = argparse.ArgumentParser(description="Rebuild PnL aggregates for a wallet from its stored events.")
    parser.add_argument("--db", type=Path, default=app_config.app.db_path, help="SQLite DB path.")
    parser.add_argument("--wallet", type=str, default=None, help="Wallet address or account name.")
    parser.add_argument("--start-day", type=date.fromisoformat, default=None, help="First day (YYYY-MM-DD).")
    parser.add_argument("--end-day", type=date.fromisoformat, default=None, help="Last day (YYYY-MM-DD).")
    parser.add_argument(
        "--initial-equity",
        type=float,
        default=None,
        help="Equity before the first day (default: account starting_equity or 0).",
    )
    parser.add_argument("--no-rederive", action="store_true", help="Skip re-deriving events from raw events.")
    args = parser.parse_args(argv)

    configure_logging(app_config.logging)
    wallet = resolve_wallet(args.wallet)
    initial_equity = args.initial_equity
    if initial_equity is None:
        initial_equity = wallet.starting_equity

    conn = connect(args.db)
    init_db(conn)
    try:
        run = recompute_wallet(
            conn,
            wallet.address,
            start_day=args.start_day,
            end_day=args.end_day,
            initial_equity=initial_equity,
            rederive=not args.no_rederive,
            page_size=app_config.sync.read_page_size,
            stale_run_minutes=app_config.sync.stale_run_minutes,
        )
    finally:
        conn.close()

    print(f"run_id {run.run_id}")
    print(f"status {run.status}")
    print(f"days_processed {run.days_processed}/{run.days_total}")
    print(f"months_processed {run.months_processed}")
    print(f"closed_trades {run.closed_trades}")
    return 0 if run.status == STATUS_COMPLETED else 1


def claim_wallet(conn: sqlite3.Connection, wallet_id: int, kind: str, *, stale_run_minutes: int) -> int:
    """Start a ``kind`` run for the wallet and return its run id.

    Runs older than ``stale_run_minutes`` are marked failed first so a crashed
    process does not block the wallet forever. Raises RunInProgressError if a
    live sync or recompute already holds the wallet.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=stale_run_minutes)
    run_id, expired = start_run(conn, wallet_id, kind, stale_before=cutoff)
    if expired:
        logger.warning("Marked %d stale run(s) failed for wallet %d", expired, wallet_id)
    return run_id


def recompute_wallet(
    conn: sqlite3.Connection,
    address: str,
    *,
    start_day: date | None = None,
    end_day: date | None = None,
    initial_equity: float | None = None,
    rederive: bool = True,
    page_size: int = reader.DEFAULT_PAGE_SIZE,
    stale_run_minutes: int = DEFAULT_STALE_RUN_MINUTES,
) -> RecomputeRun:
    """Rebuild a wallet's aggregates, fully or for an inclusive day range."""
    address = normalize_wallet(address)
    wallet = reader.find_wallet(conn, address)
    if wallet is None:
        raise WalletNotFoundError(address)
    if start_day and end_day and start_day > end_day:
        raise ValueError("start_day must not be after end_day")
    run_id = claim_wallet(conn, wallet.wallet_id, "recompute", stale_run_minutes=stale_run_minutes)
    logger.info("Recompute run %d started for %s", run_id, address)
    fields: dict[str, object] = {"status": STATUS_FAILED, "error_message": "Run interrupted"}
    try:
        scoped = start_day is not None or end_day is not None
        if rederive:
            rederive_days(conn, wallet.wallet_id, _raw_days(conn, wallet.wallet_id, start_day, end_day) if scoped else None)
        days = _aggregate_days(conn, wallet.wallet_id, start_day, end_day) if scoped else None
        result = aggregate_wallet(
            conn,
            wallet.wallet_id,
            days=days,
            initial_equity=initial_equity or 0.0,
            page_size=page_size,
        )
        fields = {
            "status": STATUS_COMPLETED,
            "days_total": result.days_total,
            "days_processed": result.days_processed,
            "months_processed": result.months_processed,
            "closed_trades": result.closed_trades,
            "error_message": None,
        }
    except Exception as exc:
        logger.exception("Recompute run %d failed", run_id)
        fields = {"status": STATUS_FAILED, "error_message": str(exc) or exc.__class__.__name__}
        raise
    finally:
        update_recompute_run(conn, run_id, completed_at=utc_now(), **fields)
        logger.info("Recompute run %d finished: %s", run_id, fields["status"])
    return reader.load_recompute_run(conn, run_id)


def _raw_days(
    conn: sqlite3.Connection, wallet_id: int, start_day: date | None, end_day: date | None
) -> set[date]:
    days = set(reader.load_raw_event_days(conn, wallet_id))
    days.update(reader.load_event_days(conn, wallet_id, start_day=start_day, end_day=end_day))
    return {day for day in days if _in_range(day, start_day, end_day)}


def _aggregate_days(
    conn: sqlite3.Connection, wallet_id: int, start_day: date | None, end_day: date | None
) -> set[date]:
    days = set(reader.load_event_days(conn, wallet_id, start_day=start_day, end_day=end_day))
    days.update(row.day for row in reader.load_daily_pnl(conn, wallet_id, start_day=start_day, end_day=end_day))
    return days


def _in_range(day: date, start_day: date | None, end_day: date | None) -> bool:
    if start_day is not None and day < start_day:
        return False
    if end_day is not None and day > end_day:
        return False
    return True


if __name__ == "__main__":
    raise SystemExit(main())
