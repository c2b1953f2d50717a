from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from pnl_ledger.models import PERP_FUNDING, ClosedTrade, EconomicEvent
from pnl_ledger.reconstruct.trades import LONG, SHORT


@dataclass(frozen=True)
class FundingAttribution:
    event: EconomicEvent
    matched: ClosedTrade | None


def apply_funding_events(
    trades: Iterable[ClosedTrade], events: Iterable[EconomicEvent]
) -> list[FundingAttribution]:
    """Add each funding payment to the trade holding that market at the time.

    Unmatched payments stay in the daily aggregates only.
    """
    trades_by_market: dict[tuple[int, str], list[ClosedTrade]] = {}
    for trade in trades:
        trade.funding = 0.0
        trades_by_market.setdefault((trade.wallet_id, trade.market), []).append(trade)

    for trade_group in trades_by_market.values():
        trade_group.sort(key=lambda t: t.entry_time)

    attributions: list[FundingAttribution] = []
    funding = [event for event in events if event.event_type == PERP_FUNDING]
    for event in sorted(funding, key=_event_sort_key):
        matched = _find_trade_for_event(trades_by_market.get((event.wallet_id, event.market), []), event)
        try:
            amount = float(event.funding_usd or 0.0)
        except (TypeError, ValueError):
            continue
        if matched is not None:
            matched.funding += amount
        attributions.append(FundingAttribution(event=event, matched=matched))
    return attributions


def _event_sort_key(event: EconomicEvent) -> datetime:
    return event.ts


def _find_trade_for_event(trades: list[ClosedTrade], event: EconomicEvent) -> ClosedTrade | None:
    side = _position_side(event)
    for trade in trades:
        if side is not None and trade.side != side:
            continue
        if trade.entry_time <= event.ts <= trade.exit_time:
            return trade
    return None


def _position_side(event: EconomicEvent) -> str | None:
    value = (event.meta or {}).get("position_size")
    try:
        size = float(value)
    except (TypeError, ValueError):
        return None
    if size > 0:
        return LONG
    if size < 0:
        return SHORT
    return None
