"""Round-trip trade reconstruction from PERP_FILL events.

Weighted-average method: same-direction fills move the average entry price,
opposing fills realize ``(exit - avg_entry) * closed_qty * direction`` against
it, and a trade is emitted once the running position returns to flat. A fill
that crosses zero is split; the excess opens the next trade at the fill price.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from pnl_ledger.models import PERP_FILL, ClosedTrade, EconomicEvent

logger = logging.getLogger(__name__)

LONG = "long"
SHORT = "short"

BUY_DIRECTIONS = {"Open Long", "Close Short", "Short > Long", "Buy"}
SELL_DIRECTIONS = {"Open Short", "Close Long", "Long > Short", "Sell"}

EPSILON = 1e-9


@dataclass
class PositionState:
    wallet_id: int
    market: str
    size: float = 0.0
    avg_entry_price: float = 0.0
    entry_time: datetime | None = None
    entry_qty_total: float = 0.0
    entry_notional: float = 0.0
    exit_qty_total: float = 0.0
    exit_notional: float = 0.0
    realized_pnl: float = 0.0
    fees: float = 0.0
    side: str | None = None


def reconstruct_closed_trades(events: Iterable[EconomicEvent]) -> list[ClosedTrade]:
    fills = [event for event in events if event.event_type == PERP_FILL]
    ordered = sorted(fills, key=_sort_key)
    # One-way position mode per market.
    states: dict[tuple[int, str], PositionState] = {}
    trades: list[ClosedTrade] = []

    for fill in ordered:
        try:
            size = abs(_num(fill.size))
            _num(fill.exec_price)
            _num(fill.fee_usd)
        except (TypeError, ValueError):
            logger.warning("Skipping unparseable fill %s on %s", fill.event_id, fill.market)
            continue
        if size < EPSILON:
            continue
        key = (fill.wallet_id, fill.market)
        state = states.get(key)
        if state is None:
            state = PositionState(wallet_id=fill.wallet_id, market=fill.market)
            states[key] = state
        signed_qty = size if is_buy(fill) else -size
        _apply_fill_to_state(state, fill, signed_qty, trades)

    trades.sort(key=lambda trade: (trade.exit_time, trade.market))
    return trades


def is_buy(fill: EconomicEvent) -> bool:
    meta = fill.meta or {}
    raw_side = str(meta.get("side") or "").upper()
    if raw_side == "B":
        return True
    if raw_side == "A":
        return False
    direction = str(meta.get("dir") or "")
    if direction in BUY_DIRECTIONS:
        return True
    if direction in SELL_DIRECTIONS:
        return False
    return fill.side == LONG


def _sort_key(fill: EconomicEvent) -> tuple:
    return (fill.wallet_id, fill.market, fill.ts, fill.event_id or 0)


def _apply_fill_to_state(
    state: PositionState, fill: EconomicEvent, signed_qty: float, trades: list[ClosedTrade]
) -> None:
    if abs(state.size) < EPSILON:
        _start_position(state, fill, signed_qty, _num(fill.fee_usd))
        return

    if state.size * signed_qty > 0:
        _add_to_position(state, fill, signed_qty)
        return

    _reduce_or_reverse(state, fill, signed_qty, trades)


def _start_position(state: PositionState, fill: EconomicEvent, signed_qty: float, fee: float) -> None:
    price = _num(fill.exec_price)
    state.size = signed_qty
    state.avg_entry_price = price
    state.entry_time = fill.ts
    state.entry_qty_total = abs(signed_qty)
    state.entry_notional = price * abs(signed_qty)
    state.exit_qty_total = 0.0
    state.exit_notional = 0.0
    state.realized_pnl = 0.0
    state.fees = fee
    state.side = LONG if signed_qty > 0 else SHORT


def _add_to_position(state: PositionState, fill: EconomicEvent, signed_qty: float) -> None:
    price = _num(fill.exec_price)
    new_abs = abs(state.size) + abs(signed_qty)
    state.avg_entry_price = (state.avg_entry_price * abs(state.size) + price * abs(signed_qty)) / new_abs
    state.size += signed_qty
    state.entry_qty_total += abs(signed_qty)
    state.entry_notional += price * abs(signed_qty)
    state.fees += _num(fill.fee_usd)


def _reduce_or_reverse(
    state: PositionState, fill: EconomicEvent, signed_qty: float, trades: list[ClosedTrade]
) -> None:
    price = _num(fill.exec_price)
    fee = _num(fill.fee_usd)
    close_qty = min(abs(signed_qty), abs(state.size))
    direction = 1.0 if state.size > 0 else -1.0
    state.realized_pnl += (price - state.avg_entry_price) * close_qty * direction
    state.exit_qty_total += close_qty
    state.exit_notional += price * close_qty

    fee_per_unit = fee / abs(signed_qty)
    close_fee = fee_per_unit * close_qty
    state.fees += close_fee

    remaining = abs(signed_qty) - close_qty
    if remaining < EPSILON:
        state.size += signed_qty
        if abs(state.size) < EPSILON:
            _finalize_trade(state, fill.ts, trades)
            _reset_state(state)
        return

    _finalize_trade(state, fill.ts, trades)
    _reset_state(state)
    _start_position(state, fill, remaining if signed_qty > 0 else -remaining, fee_per_unit * remaining)


def _finalize_trade(state: PositionState, exit_time: datetime, trades: list[ClosedTrade]) -> None:
    if state.entry_time is None or state.side is None:
        return

    entry_price = (
        state.entry_notional / state.entry_qty_total if state.entry_qty_total else state.avg_entry_price
    )
    exit_price = (
        state.exit_notional / state.exit_qty_total if state.exit_qty_total else state.avg_entry_price
    )
    trades.append(
        ClosedTrade(
            wallet_id=state.wallet_id,
            market=state.market,
            side=state.side,
            entry_time=state.entry_time,
            exit_time=exit_time,
            avg_entry_price=entry_price,
            avg_exit_price=exit_price,
            size=state.entry_qty_total,
            realized_pnl=state.realized_pnl,
            fees=state.fees,
        )
    )


def _reset_state(state: PositionState) -> None:
    state.size = 0.0
    state.avg_entry_price = 0.0
    state.entry_time = None
    state.entry_qty_total = 0.0
    state.entry_notional = 0.0
    state.exit_qty_total = 0.0
    state.exit_notional = 0.0
    state.realized_pnl = 0.0
    state.fees = 0.0
    state.side = None


def _num(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    return float(value)
