from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from pnl_ledger.aggregate import aggregate_wallet
from pnl_ledger.ingest.hyperliquid import load_fills_payload, load_funding_payload
from pnl_ledger.ledger import record_raw_events, rederive_days
from pnl_ledger.models import PERP_FILL, EconomicEvent
from pnl_ledger.storage import sqlite_reader as reader
from pnl_ledger.storage.sqlite_store import replace_economic_events

from conftest import WALLET, ms


@pytest.fixture
def seeded(conn, wallet, fill_record, funding_record):
    fills = [
        fill_record("BTC", "B", 1, 100, ms(2024, 1, 30, 9), fee=1.0),
        fill_record("BTC", "A", 1, 150, ms(2024, 1, 30, 15), closed_pnl=50, fee=1.5, direction="Close Long"),
        fill_record("ETH", "A", 2, 50, ms(2024, 1, 31, 9), fee=0.5),
        fill_record("ETH", "B", 2, 60, ms(2024, 2, 2, 9), closed_pnl=-20, fee=0.5, direction="Close Short"),
    ]
    funding = [
        funding_record("BTC", -2.0, ms(2024, 1, 30, 12)),
        funding_record("ETH", 1.0, ms(2024, 2, 1, 0), szi=-2.0),
    ]
    raw = load_fills_payload(wallet.wallet_id, WALLET, fills).raw_events
    raw += load_funding_payload(wallet.wallet_id, WALLET, funding).raw_events
    record_raw_events(conn, raw)
    rederive_days(conn, wallet.wallet_id)
    return wallet


def _snapshot(conn, wallet_id: int):
    return (
        reader.load_daily_pnl(conn, wallet_id),
        reader.load_monthly_pnl(conn, wallet_id),
        [(t.market, t.entry_time, t.exit_time, t.net_pnl) for t in reader.load_closed_trades(conn, wallet_id)],
        reader.load_equity_curve(conn, wallet_id),
        reader.load_drawdown_events(conn, wallet_id),
        reader.load_market_stats(conn, wallet_id),
    )


def test_full_aggregation_builds_every_table(conn, seeded):
    result = aggregate_wallet(conn, seeded.wallet_id, initial_equity=1000.0)

    assert result.days_total == 4
    assert result.days_processed == 4
    assert result.months_processed == 2
    assert result.closed_trades == 2
    assert result.skipped_days == []

    daily = {row.day: row for row in reader.load_daily_pnl(conn, seeded.wallet_id)}
    jan30 = daily[date(2024, 1, 30)]
    assert jan30.closed_pnl == pytest.approx(50.0)
    assert jan30.funding == pytest.approx(-2.0)
    assert jan30.fees == pytest.approx(2.5)
    assert jan30.total_pnl == pytest.approx(45.5)
    assert jan30.volume == pytest.approx(250.0)
    assert jan30.trades_count == 2
    assert daily[date(2024, 2, 1)].trades_count == 0
    assert daily[date(2024, 2, 2)].cumulative_pnl == pytest.approx(30.0)
    assert daily[date(2024, 2, 2)].drawdown == pytest.approx(20.0)

    trades = reader.load_closed_trades(conn, seeded.wallet_id)
    eth = [trade for trade in trades if trade.market == "ETH"][0]
    assert eth.side == "short"
    assert eth.funding == pytest.approx(1.0)
    assert eth.effective_leverage == pytest.approx(100.0 / 1045.5)

    curve = reader.load_equity_curve(conn, seeded.wallet_id)
    assert curve[0].starting_equity == pytest.approx(1000.0)
    assert curve[-1].ending_equity == pytest.approx(1000.0 + sum(row.total_pnl for row in daily.values()))


def test_monthly_rows_are_sums_of_daily_rows(conn, seeded):
    aggregate_wallet(conn, seeded.wallet_id)
    daily = reader.load_daily_pnl(conn, seeded.wallet_id)
    for month in reader.load_monthly_pnl(conn, seeded.wallet_id):
        rows = [row for row in daily if row.day.replace(day=1) == month.month]
        assert month.total_pnl == pytest.approx(sum(row.total_pnl for row in rows))
        assert month.closed_pnl == pytest.approx(sum(row.closed_pnl for row in rows))
        assert month.volume == pytest.approx(sum(row.volume for row in rows))
        assert month.trading_days == sum(1 for row in rows if row.trades_count > 0)


def test_aggregation_is_idempotent(conn, seeded):
    aggregate_wallet(conn, seeded.wallet_id, initial_equity=500.0)
    first = _snapshot(conn, seeded.wallet_id)
    aggregate_wallet(conn, seeded.wallet_id, initial_equity=500.0)
    assert _snapshot(conn, seeded.wallet_id) == first


def test_scoped_run_matches_full_run(conn, seeded):
    aggregate_wallet(conn, seeded.wallet_id)
    full = _snapshot(conn, seeded.wallet_id)
    aggregate_wallet(conn, seeded.wallet_id, days=[date(2024, 1, 31), date(2024, 2, 2)])
    assert _snapshot(conn, seeded.wallet_id) == full


def test_scoped_run_drops_emptied_days_and_months(conn, seeded):
    aggregate_wallet(conn, seeded.wallet_id)
    emptied = [date(2024, 2, 1), date(2024, 2, 2)]
    replace_economic_events(conn, seeded.wallet_id, emptied, [])

    result = aggregate_wallet(conn, seeded.wallet_id, days=emptied)

    assert result.days_processed == 2
    assert result.months_processed == 0
    assert [row.day for row in reader.load_daily_pnl(conn, seeded.wallet_id)] == [
        date(2024, 1, 30),
        date(2024, 1, 31),
    ]
    assert [row.month for row in reader.load_monthly_pnl(conn, seeded.wallet_id)] == [date(2024, 1, 1)]
    assert result.closed_trades == 1


def test_malformed_day_is_skipped(conn, seeded):
    bad_day = datetime(2024, 3, 5, 10, tzinfo=timezone.utc)
    replace_economic_events(
        conn,
        seeded.wallet_id,
        [bad_day.date()],
        [
            EconomicEvent(
                wallet_id=seeded.wallet_id,
                ts=bad_day,
                event_type=PERP_FILL,
                venue="hypercore",
                market="BTC",
                size=1.0,
                exec_price=100.0,
                fee_usd="oops",
                meta={"side": "B"},
            )
        ],
    )

    result = aggregate_wallet(conn, seeded.wallet_id)

    assert result.days_total == 5
    assert result.days_processed == 4
    assert result.skipped_days == [date(2024, 3, 5)]
    assert date(2024, 3, 5) not in {row.day for row in reader.load_daily_pnl(conn, seeded.wallet_id)}
    assert result.closed_trades == 2


def test_wallet_without_events(conn, wallet):
    result = aggregate_wallet(conn, wallet.wallet_id)
    assert result.days_total == 0
    assert result.closed_trades == 0
    assert reader.load_equity_curve(conn, wallet.wallet_id) == []
