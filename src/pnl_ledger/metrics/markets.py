from __future__ import annotations

from typing import Iterable

from pnl_ledger.metrics.pnl import win_rate
from pnl_ledger.models import ClosedTrade, MarketStats


def compute_market_stats(wallet_id: int, trades: Iterable[ClosedTrade]) -> list[MarketStats]:
    grouped: dict[str, list[ClosedTrade]] = {}
    for trade in trades:
        grouped.setdefault(trade.market, []).append(trade)

    stats: list[MarketStats] = []
    for market, market_trades in grouped.items():
        total = len(market_trades)
        winners = [trade.net_pnl for trade in market_trades if trade.is_win]
        losers = [abs(trade.net_pnl) for trade in market_trades if not trade.is_win]
        win_total = sum(winners)
        loss_total = sum(losers)
        leverages = [
            trade.effective_leverage for trade in market_trades if trade.effective_leverage is not None
        ]
        stats.append(
            MarketStats(
                wallet_id=wallet_id,
                market=market,
                total_trades=total,
                wins=len(winners),
                losses=len(losers),
                win_rate=win_rate(len(winners), total),
                total_pnl=sum(trade.net_pnl for trade in market_trades),
                total_volume=sum(trade.notional_value for trade in market_trades),
                total_fees=sum(trade.fees for trade in market_trades),
                total_funding=sum(trade.funding for trade in market_trades),
                avg_trade_size=sum(trade.size for trade in market_trades) / total,
                avg_leverage=sum(leverages) / len(leverages) if leverages else None,
                avg_win=win_total / len(winners) if winners else 0.0,
                avg_loss=loss_total / len(losers) if losers else 0.0,
                # No losing PnL leaves the ratio undefined.
                profit_factor=win_total / loss_total if loss_total > 0 else None,
            )
        )
    stats.sort(key=lambda item: (-item.total_pnl, item.market))
    return stats
