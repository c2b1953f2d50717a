from __future__ import annotations

import pytest

from pnl_ledger import sync_api
from pnl_ledger.errors import InvalidWalletError, RunInProgressError, UpstreamTimeoutError
from pnl_ledger.models import FETCH_ERROR, FETCH_OK, FETCH_TIMEOUT, STATUS_COMPLETED, STATUS_FAILED
from pnl_ledger.storage import sqlite_reader as reader
from pnl_ledger.storage.sqlite_store import create_sync_run, find_running_run, get_or_create_wallet
from pnl_ledger.sync_api import sync_wallet

from conftest import WALLET, FakeInfoClient, ms

START = ms(2024, 3, 1, 0)
END = ms(2024, 4, 1, 0)


def _count(conn, table: str) -> int:
    return conn.execute(f"SELECT COUNT(*) AS total FROM {table}").fetchone()["total"]


@pytest.fixture
def ten_fills(fill_record):
    return [
        fill_record("BTC", "B" if index % 2 == 0 else "A", 1, 100 + index, ms(2024, 3, 1 + index))
        for index in range(10)
    ]


def test_sync_ingests_and_aggregates(conn, ten_fills, funding_record):
    client = FakeInfoClient(fills=ten_fills, funding=[funding_record("BTC", -1.0, ms(2024, 3, 1, 18))])

    run = sync_wallet(conn, client, WALLET.upper().replace("0X", "0x"), start_ms=START, end_ms=END)

    assert run.status == STATUS_COMPLETED
    assert run.fills_ingested == 10
    assert run.funding_ingested == 1
    assert run.events_ingested == 11
    assert run.days_recomputed == 10
    assert run.fills_status == FETCH_OK
    assert run.funding_status == FETCH_OK
    assert run.error_message is None
    assert run.completed_at is not None
    assert {call[1] for call in client.calls} == {WALLET}
    assert {call[0] for call in client.calls} == {"fills", "funding"}

    wallet = reader.find_wallet(conn, WALLET)
    assert len(reader.load_daily_pnl(conn, wallet.wallet_id)) == 10
    assert len(reader.load_closed_trades(conn, wallet.wallet_id)) == 5


def test_funding_failure_does_not_block_fills(conn, ten_fills):
    client = FakeInfoClient(fills=ten_fills, funding=RuntimeError("funding endpoint down"))

    run = sync_wallet(conn, client, WALLET, start_ms=START, end_ms=END)

    assert run.status == STATUS_COMPLETED
    assert run.fills_ingested == 10
    assert run.funding_ingested == 0
    assert run.fills_status == FETCH_OK
    assert run.funding_status == FETCH_ERROR
    assert "funding endpoint down" in run.error_message
    assert _count(conn, "economic_events") == 10


def test_timeout_is_reported_separately(conn):
    client = FakeInfoClient(fills=UpstreamTimeoutError("slow"), funding=[])

    run = sync_wallet(conn, client, WALLET, start_ms=START, end_ms=END)

    assert run.status == STATUS_COMPLETED
    assert run.fills_status == FETCH_TIMEOUT
    assert run.funding_status == FETCH_OK
    assert run.events_ingested == 0
    assert run.error_message.startswith("fills:")


def test_resync_does_not_duplicate_events(conn, ten_fills):
    client = FakeInfoClient(fills=ten_fills)
    sync_wallet(conn, client, WALLET, start_ms=START, end_ms=END)
    wallet = reader.find_wallet(conn, WALLET)
    before = reader.load_daily_pnl(conn, wallet.wallet_id)

    second = sync_wallet(conn, client, WALLET, start_ms=START, end_ms=END)

    assert second.fills_ingested == 10
    assert second.events_ingested == 0
    assert _count(conn, "raw_events") == 10
    assert _count(conn, "economic_events") == 10
    assert reader.load_daily_pnl(conn, wallet.wallet_id) == before


def test_full_rebuild_matches_incremental(conn, ten_fills):
    client = FakeInfoClient(fills=ten_fills)
    sync_wallet(conn, client, WALLET, start_ms=START, end_ms=END)
    wallet = reader.find_wallet(conn, WALLET)
    incremental = reader.load_daily_pnl(conn, wallet.wallet_id)

    run = sync_wallet(conn, FakeInfoClient(), WALLET, start_ms=START, end_ms=END, full_rebuild=True)

    assert run.days_recomputed == 10
    assert reader.load_daily_pnl(conn, wallet.wallet_id) == incremental


def test_invalid_wallet_leaves_no_state(conn):
    client = FakeInfoClient()
    with pytest.raises(InvalidWalletError):
        sync_wallet(conn, client, "0x1234", start_ms=START, end_ms=END)
    assert client.calls == []
    assert _count(conn, "wallets") == 0
    assert _count(conn, "sync_runs") == 0


def test_empty_window_is_rejected(conn):
    with pytest.raises(ValueError):
        sync_wallet(conn, FakeInfoClient(), WALLET, start_ms=END, end_ms=START)


def test_running_sync_blocks_a_second_one(conn):
    wallet = get_or_create_wallet(conn, WALLET)
    run_id = create_sync_run(conn, wallet.wallet_id)
    client = FakeInfoClient()

    with pytest.raises(RunInProgressError) as excinfo:
        sync_wallet(conn, client, WALLET, start_ms=START, end_ms=END)

    assert excinfo.value.run_id == run_id
    assert excinfo.value.kind == "sync"
    assert client.calls == []


def test_stale_run_is_expired(conn):
    wallet = get_or_create_wallet(conn, WALLET)
    stale_id = create_sync_run(conn, wallet.wallet_id)
    conn.execute(
        "UPDATE sync_runs SET started_at = ? WHERE run_id = ?",
        ("2000-01-01T00:00:00.000000+00:00", stale_id),
    )
    conn.commit()

    run = sync_wallet(conn, FakeInfoClient(), WALLET, start_ms=START, end_ms=END)

    assert run.status == STATUS_COMPLETED
    stale = reader.load_sync_run(conn, stale_id)
    assert stale.status == STATUS_FAILED
    assert stale.completed_at is not None


def test_failure_after_fetch_marks_run_failed(conn, ten_fills, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(sync_api, "aggregate_wallet", boom)

    with pytest.raises(RuntimeError):
        sync_wallet(conn, FakeInfoClient(fills=ten_fills), WALLET, start_ms=START, end_ms=END)

    wallet = reader.find_wallet(conn, WALLET)
    run = reader.load_latest_sync_run(conn, wallet.wallet_id)
    assert run.status == STATUS_FAILED
    assert run.error_message == "disk full"
    assert run.fills_ingested == 10
    assert find_running_run(conn, wallet.wallet_id) is None
