from __future__ import annotations

import argparse
import logging
import os
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

from pnl_ledger.aggregate import aggregate_wallet
from pnl_ledger.config.accounts import normalize_wallet, resolve_wallet
from pnl_ledger.config.app_config import (
    SyncSettings,
    apply_api_settings,
    configure_logging,
    load_app_config,
    load_dotenv,
)
from pnl_ledger.errors import UpstreamTimeoutError
from pnl_ledger.ingest.hyperliquid import load_fills_payload, load_funding_payload
from pnl_ledger.ingest.hyperliquid_api import HyperliquidInfoClient, HyperliquidInfoConfig
from pnl_ledger.ledger import record_raw_events, rederive_days
from pnl_ledger.models import (
    FETCH_ERROR,
    FETCH_OK,
    FETCH_TIMEOUT,
    STATUS_COMPLETED,
    STATUS_FAILED,
    SyncRun,
)
from pnl_ledger.recompute import claim_wallet
from pnl_ledger.storage import sqlite_reader as reader
from pnl_ledger.storage.sqlite_store import (
    connect,
    get_or_create_wallet,
    init_db,
    update_sync_run,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_SYNC_SETTINGS = SyncSettings(
    history_start_ms=1704067200000,
    fetch_concurrently=True,
    read_page_size=1000,
    stale_run_minutes=30,
)


class InfoClient(Protocol):
    def fetch_fills(self, *, user: str, start_ms: int, end_ms: int) -> list[Mapping[str, Any]]: ...

    def fetch_funding(self, *, user: str, start_ms: int, end_ms: int) -> list[Mapping[str, Any]]: ...


@dataclass
class FetchOutcome:
    records: list[Mapping[str, Any]] = field(default_factory=list)
    status: str = FETCH_OK
    error: str | None = None


def main(argv: list[str] | None = None) -> int:
    app_config = load_app_config()
    parser = argparse.ArgumentParser(description="Sync Hyperliquid fills and funding into the SQLite ledger.")
    parser.add_argument("--db", type=Path, default=app_config.app.db_path, help="SQLite DB path.")
    parser.add_argument("--wallet", type=str, default=None, help="Wallet address or account name.")
    parser.add_argument("--env", type=Path, default=app_config.app.env_path, help="Path to .env file.")
    parser.add_argument(
        "--start-ms", type=int, default=app_config.sync.history_start_ms, help="Start timestamp (ms)."
    )
    parser.add_argument("--end-ms", type=int, default=None, help="End timestamp (ms, default now).")
    parser.add_argument("--full-rebuild", action="store_true", help="Rebuild every aggregate after ingest.")
    args = parser.parse_args(argv)

    configure_logging(app_config.logging)
    wallet = resolve_wallet(args.wallet)
    env = dict(os.environ)
    env.update(load_dotenv(args.env))
    client = HyperliquidInfoClient(HyperliquidInfoConfig.from_env(apply_api_settings(env, app_config)))

    conn = connect(args.db)
    init_db(conn)
    try:
        run = sync_wallet(
            conn,
            client,
            wallet.address,
            start_ms=args.start_ms,
            end_ms=args.end_ms,
            full_rebuild=args.full_rebuild,
            settings=app_config.sync,
            initial_equity=wallet.starting_equity,
        )
    finally:
        conn.close()

    print(f"run_id {run.run_id}")
    print(f"status {run.status}")
    print(f"fills_ingested {run.fills_ingested} ({run.fills_status})")
    print(f"funding_ingested {run.funding_ingested} ({run.funding_status})")
    print(f"events_ingested {run.events_ingested}")
    print(f"days_recomputed {run.days_recomputed}")
    return 0 if run.status == STATUS_COMPLETED else 1


def sync_wallet(
    conn: sqlite3.Connection,
    client: InfoClient,
    wallet: str,
    *,
    start_ms: int | None = None,
    end_ms: int | None = None,
    full_rebuild: bool = False,
    settings: SyncSettings | None = None,
    initial_equity: float | None = None,
) -> SyncRun:
    """Fetch, store and aggregate one wallet's history over [start_ms, end_ms).

    Fills and funding are fetched independently; a failure in one is recorded
    on the run and the other is still ingested.
    """
    address = normalize_wallet(wallet)
    settings = settings or DEFAULT_SYNC_SETTINGS
    start = int(start_ms if start_ms is not None else settings.history_start_ms)
    end = int(end_ms if end_ms is not None else time.time() * 1000)
    if start >= end:
        raise ValueError("start_ms must be before end_ms")

    record = get_or_create_wallet(conn, address)
    run_id = claim_wallet(conn, record.wallet_id, "sync", stale_run_minutes=settings.stale_run_minutes)
    logger.info(
        "Sync run %d started for %s (%s to %s)",
        run_id,
        address,
        _format_ms(start),
        _format_ms(end),
    )

    fields: dict[str, object] = {"status": STATUS_FAILED, "error_message": "Run interrupted"}
    try:
        fills, funding = _fetch_all(client, address, start, end, concurrent=settings.fetch_concurrently)
        fields.update(
            fills_ingested=len(fills.records),
            funding_ingested=len(funding.records),
            fills_status=fills.status,
            funding_status=funding.status,
        )

        fill_batch = load_fills_payload(record.wallet_id, address, fills.records)
        funding_batch = load_funding_payload(record.wallet_id, address, funding.records)
        skipped = fill_batch.skipped + funding_batch.skipped
        if skipped:
            logger.warning("Skipped %d records without a usable time", skipped)
        inserted, days = record_raw_events(conn, [*fill_batch.raw_events, *funding_batch.raw_events])
        fields["events_ingested"] = inserted

        if full_rebuild:
            rederive_days(conn, record.wallet_id)
            result = aggregate_wallet(
                conn,
                record.wallet_id,
                initial_equity=initial_equity or 0.0,
                page_size=settings.read_page_size,
            )
        else:
            rederive_days(conn, record.wallet_id, days)
            result = aggregate_wallet(
                conn,
                record.wallet_id,
                days=days,
                initial_equity=initial_equity or 0.0,
                page_size=settings.read_page_size,
            )
        fields.update(
            status=STATUS_COMPLETED,
            days_recomputed=result.days_processed,
            error_message=_fetch_errors(fills, funding),
        )
    except Exception as exc:
        logger.exception("Sync run %d failed", run_id)
        fields.update(status=STATUS_FAILED, error_message=str(exc) or exc.__class__.__name__)
        raise
    finally:
        update_sync_run(conn, run_id, completed_at=utc_now(), **fields)
        logger.info("Sync run %d finished: %s", run_id, fields["status"])
    return reader.load_sync_run(conn, run_id)


def _fetch_all(
    client: InfoClient, address: str, start_ms: int, end_ms: int, *, concurrent: bool
) -> tuple[FetchOutcome, FetchOutcome]:
    def fills() -> FetchOutcome:
        return _fetch_one("fills", client.fetch_fills, address, start_ms, end_ms)

    def funding() -> FetchOutcome:
        return _fetch_one("funding", client.fetch_funding, address, start_ms, end_ms)

    if not concurrent:
        return fills(), funding()
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="sync-fetch") as pool:
        fills_future = pool.submit(fills)
        funding_future = pool.submit(funding)
        return fills_future.result(), funding_future.result()


def _fetch_one(
    label: str,
    fetch: Callable[..., list[Mapping[str, Any]]],
    address: str,
    start_ms: int,
    end_ms: int,
) -> FetchOutcome:
    try:
        records = fetch(user=address, start_ms=start_ms, end_ms=end_ms)
    except UpstreamTimeoutError as exc:
        logger.error("Timed out fetching %s for %s: %s", label, address, exc)
        return FetchOutcome(status=FETCH_TIMEOUT, error=f"{label}: {exc}")
    except Exception as exc:
        logger.exception("Error fetching %s for %s", label, address)
        return FetchOutcome(status=FETCH_ERROR, error=f"{label}: {exc}")
    return FetchOutcome(records=list(records))


def _fetch_errors(*outcomes: FetchOutcome) -> str | None:
    errors = [outcome.error for outcome in outcomes if outcome.error]
    return "; ".join(errors) if errors else None


def _format_ms(value: int) -> str:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()


if __name__ == "__main__":
    raise SystemExit(main())
