from __future__ import annotations

from datetime import date

import pytest

from pnl_ledger import recompute
from pnl_ledger.errors import InvalidWalletError, RunInProgressError, WalletNotFoundError
from pnl_ledger.models import STATUS_COMPLETED, STATUS_FAILED
from pnl_ledger.recompute import recompute_wallet
from pnl_ledger.storage import sqlite_reader as reader
from pnl_ledger.storage.sqlite_store import connect, create_recompute_run, get_or_create_wallet, init_db
from pnl_ledger.sync_api import sync_wallet

from conftest import WALLET, FakeInfoClient, ms


@pytest.fixture
def synced(conn, fill_record, funding_record):
    fills = [
        fill_record("BTC", "B", 1, 100, ms(2024, 5, 1), fee=0.5),
        fill_record("BTC", "A", 1, 120, ms(2024, 5, 3), closed_pnl=20, fee=0.5, direction="Close Long"),
        fill_record("SOL", "A", 10, 30, ms(2024, 6, 2), fee=0.2),
        fill_record("SOL", "B", 10, 25, ms(2024, 6, 9), closed_pnl=50, fee=0.2, direction="Close Short"),
    ]
    funding = [funding_record("SOL", 0.75, ms(2024, 6, 5), szi=-10.0)]
    sync_wallet(
        conn,
        FakeInfoClient(fills=fills, funding=funding),
        WALLET,
        start_ms=ms(2024, 5, 1, 0),
        end_ms=ms(2024, 7, 1, 0),
    )
    return reader.find_wallet(conn, WALLET)


def test_full_recompute(conn, synced):
    before = reader.load_daily_pnl(conn, synced.wallet_id)

    run = recompute_wallet(conn, WALLET, initial_equity=1000.0)

    assert run.status == STATUS_COMPLETED
    assert run.days_total == 5
    assert run.days_processed == 5
    assert run.months_processed == 2
    assert run.closed_trades == 2
    assert run.error_message is None
    assert reader.load_daily_pnl(conn, synced.wallet_id) == before
    assert reader.load_equity_curve(conn, synced.wallet_id)[0].starting_equity == pytest.approx(1000.0)


def test_ranged_recompute_only_touches_range(conn, synced):
    run = recompute_wallet(conn, WALLET, start_day=date(2024, 6, 1), end_day=date(2024, 6, 30))

    assert run.status == STATUS_COMPLETED
    assert run.days_total == 3
    assert run.months_processed == 1
    assert run.closed_trades == 2


def test_recompute_is_idempotent(conn, synced):
    recompute_wallet(conn, WALLET)
    first = (
        reader.load_daily_pnl(conn, synced.wallet_id),
        reader.load_monthly_pnl(conn, synced.wallet_id),
        reader.load_market_stats(conn, synced.wallet_id),
    )
    recompute_wallet(conn, WALLET)
    assert (
        reader.load_daily_pnl(conn, synced.wallet_id),
        reader.load_monthly_pnl(conn, synced.wallet_id),
        reader.load_market_stats(conn, synced.wallet_id),
    ) == first


def test_unknown_wallet(conn):
    with pytest.raises(WalletNotFoundError):
        recompute_wallet(conn, "0x" + "11" * 20)
    with pytest.raises(InvalidWalletError):
        recompute_wallet(conn, "not-a-wallet")


def test_inverted_range_is_rejected(conn, synced):
    with pytest.raises(ValueError):
        recompute_wallet(conn, WALLET, start_day=date(2024, 6, 2), end_day=date(2024, 6, 1))
    assert reader.load_latest_recompute_run(conn, synced.wallet_id) is None


def test_running_recompute_blocks(conn):
    wallet = get_or_create_wallet(conn, WALLET)
    run_id = create_recompute_run(conn, wallet.wallet_id)
    with pytest.raises(RunInProgressError) as excinfo:
        recompute_wallet(conn, WALLET)
    assert excinfo.value.kind == "recompute"
    assert excinfo.value.run_id == run_id


def test_failed_recompute_is_recorded(conn, synced, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("aggregation exploded")

    monkeypatch.setattr(recompute, "aggregate_wallet", boom)

    with pytest.raises(RuntimeError):
        recompute_wallet(conn, WALLET)

    run = reader.load_latest_recompute_run(conn, synced.wallet_id)
    assert run.status == STATUS_FAILED
    assert run.error_message == "aggregation exploded"
    assert run.completed_at is not None


def test_main_prints_summary(tmp_path, capsys, monkeypatch):
    db_path = tmp_path / "ledger.db"
    monkeypatch.setenv("PNL_LEDGER_ACCOUNTS_CONFIG", str(tmp_path / "missing.toml"))

    conn = connect(db_path)
    init_db(conn)
    get_or_create_wallet(conn, WALLET)
    conn.close()

    assert recompute.main(["--db", str(db_path), "--wallet", WALLET]) == 0
    out = capsys.readouterr().out
    assert "status completed" in out
    assert "days_processed 0/0" in out
