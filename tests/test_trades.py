from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pnl_ledger.models import PERP_FILL, PERP_FUNDING, EconomicEvent
from pnl_ledger.reconstruct.funding import apply_funding_events
from pnl_ledger.reconstruct.trades import is_buy, reconstruct_closed_trades

START = datetime(2024, 6, 1, 9, tzinfo=timezone.utc)


def _fill(side: str, size: float, price: float, minutes: int, *, market: str = "BTC", fee: float = 0.0, event_id: int | None = None) -> EconomicEvent:
    return EconomicEvent(
        wallet_id=1,
        ts=START + timedelta(minutes=minutes),
        event_type=PERP_FILL,
        venue="hypercore",
        market=market,
        side="long" if side == "B" else "short",
        size=size,
        exec_price=price,
        fee_usd=fee,
        meta={"side": side},
        event_id=event_id,
    )


def _funding(amount: float, minutes: int, *, market: str = "BTC", szi: str | None = "1.0") -> EconomicEvent:
    return EconomicEvent(
        wallet_id=1,
        ts=START + timedelta(minutes=minutes),
        event_type=PERP_FUNDING,
        venue="hypercore",
        market=market,
        funding_usd=amount,
        fee_usd=0.0,
        meta={"position_size": szi},
    )


def test_scale_out_produces_one_trade():
    trades = reconstruct_closed_trades(
        [_fill("B", 2, 100, 0), _fill("A", 1, 110, 60), _fill("A", 1, 90, 120)]
    )

    assert len(trades) == 1
    trade = trades[0]
    assert trade.side == "long"
    assert trade.size == pytest.approx(2.0)
    assert trade.avg_entry_price == pytest.approx(100.0)
    assert trade.avg_exit_price == pytest.approx(100.0)
    assert trade.realized_pnl == pytest.approx(0.0)
    assert trade.duration_hours == pytest.approx(2.0)
    assert not trade.is_win


def test_scale_in_uses_weighted_average_entry():
    trades = reconstruct_closed_trades(
        [_fill("A", 1, 200, 0), _fill("A", 3, 100, 10), _fill("B", 4, 90, 20)]
    )
    trade = trades[0]
    assert trade.side == "short"
    assert trade.avg_entry_price == pytest.approx(125.0)
    assert trade.realized_pnl == pytest.approx((90 - 125.0) * 4 * -1)


def test_flip_splits_fill_and_prorates_fee():
    trades = reconstruct_closed_trades(
        [_fill("B", 1, 100, 0, fee=1.0), _fill("A", 3, 120, 30, fee=3.0), _fill("B", 2, 110, 90, fee=2.0)]
    )

    assert [trade.side for trade in trades] == ["long", "short"]
    first, second = trades
    assert first.realized_pnl == pytest.approx(20.0)
    assert first.fees == pytest.approx(2.0)
    assert second.size == pytest.approx(2.0)
    assert second.avg_entry_price == pytest.approx(120.0)
    assert second.entry_time == START + timedelta(minutes=30)
    assert second.realized_pnl == pytest.approx(20.0)
    assert second.fees == pytest.approx(4.0)
    assert second.net_pnl == pytest.approx(16.0)
    assert second.is_win


def test_open_positions_are_not_emitted():
    assert reconstruct_closed_trades([_fill("B", 1, 100, 0), _fill("A", 0.5, 105, 5)]) == []


def test_markets_are_tracked_independently():
    trades = reconstruct_closed_trades(
        [
            _fill("B", 1, 100, 0, market="BTC"),
            _fill("A", 2, 10, 1, market="ETH"),
            _fill("A", 1, 101, 2, market="BTC"),
            _fill("B", 2, 9, 3, market="ETH"),
        ]
    )
    assert {(trade.market, trade.side) for trade in trades} == {("BTC", "long"), ("ETH", "short")}


def test_is_buy_falls_back_to_direction():
    event = _fill("B", 1, 100, 0)
    event.meta = {"dir": "Close Short"}
    assert is_buy(event)
    event.meta = {"dir": "Long > Short"}
    assert not is_buy(event)


def test_funding_is_attributed_within_trade_window():
    trades = reconstruct_closed_trades([_fill("B", 1, 100, 0), _fill("A", 1, 100, 120)])
    attributions = apply_funding_events(
        trades,
        [
            _funding(-1.5, 60),
            _funding(0.5, 90),
            _funding(-9.0, 240),
            _funding(-2.0, 60, market="ETH"),
            _funding(-4.0, 60, szi="-1.0"),
        ],
    )

    assert trades[0].funding == pytest.approx(-1.0)
    assert sum(1 for item in attributions if item.matched is None) == 3
    assert trades[0].net_pnl == pytest.approx(-1.0)


def test_zero_net_is_not_a_win():
    trades = reconstruct_closed_trades([_fill("B", 1, 100, 0, fee=0.5), _fill("A", 1, 101, 10, fee=0.5)])
    assert trades[0].net_pnl == pytest.approx(0.0)
    assert not trades[0].is_win
