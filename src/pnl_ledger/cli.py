from __future__ import annotations

import argparse
import sys
from pathlib import Path

from pnl_ledger.config.accounts import resolve_wallet
from pnl_ledger.config.app_config import load_app_config
from pnl_ledger.models import ClosedTrade
from pnl_ledger.reconstruct.funding import apply_funding_events
from pnl_ledger.reconstruct.trades import reconstruct_closed_trades
from pnl_ledger.storage import sqlite_reader


def main(argv: list[str] | None = None) -> int:
    app_config = load_app_config()
    parser = argparse.ArgumentParser(description="Print a wallet's closed trades from the SQLite ledger.")
    parser.add_argument("--db", type=Path, default=app_config.app.db_path, help="SQLite DB path.")
    parser.add_argument("--wallet", type=str, default=None, help="Wallet address or account name.")
    parser.add_argument("--market", type=str, default=None, help="Only show this market.")
    parser.add_argument("--limit", type=int, default=None, help="Show at most this many trades.")
    parser.add_argument(
        "--from-events",
        action="store_true",
        help="Reconstruct trades from stored fills instead of reading the closed_trades table.",
    )
    parser.add_argument(
        "--utc",
        action="store_true",
        help="Print timestamps in UTC instead of local timezone.",
    )
    parser.add_argument("--out", type=Path, default=None, help="Write the table to a file instead of stdout.")
    args = parser.parse_args(argv)

    wallet = resolve_wallet(args.wallet)
    conn = sqlite_reader.connect(args.db)
    try:
        record = sqlite_reader.find_wallet(conn, wallet.address)
        if record is None:
            print(f"Wallet not found. Sync wallet first: {wallet.address}", file=sys.stderr)
            return 1
        if args.from_events:
            trades = reconstruct_closed_trades(sqlite_reader.load_fill_events(conn, record.wallet_id))
            attributions = apply_funding_events(trades, sqlite_reader.load_funding_events(conn, record.wallet_id))
            unmatched = sum(1 for item in attributions if item.matched is None)
            if unmatched:
                print(f"Unmatched funding events: {unmatched}.", file=sys.stderr)
            if args.market:
                trades = [trade for trade in trades if trade.market == args.market]
            if args.limit is not None:
                trades = trades[: args.limit]
        else:
            trades = sqlite_reader.load_closed_trades(
                conn, record.wallet_id, market=args.market, limit=args.limit
            )
    finally:
        conn.close()

    if not trades:
        print("No closed trades.")
        return 0

    output = format_trades(trades, utc=args.utc)
    if args.out is None:
        print(output)
    else:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text(output + "\n", encoding="utf-8")
        print(f"Wrote {len(trades)} trades to {args.out}")
    return 0


def format_trades(trades: list[ClosedTrade], *, utc: bool = True) -> str:
    lines = ["market side size entry_px exit_px close_time funding fees pnl_net leverage"]
    for trade in trades:
        exit_time = trade.exit_time if utc else trade.exit_time.astimezone()
        leverage = f"{trade.effective_leverage:.2f}x" if trade.effective_leverage is not None else "-"
        lines.append(
            f"{trade.market} {trade.side} {trade.size:.6g} "
            f"{trade.avg_entry_price:.6g} {trade.avg_exit_price:.6g} {exit_time.isoformat()} "
            f"{trade.funding:.6g} {trade.fees:.6g} {trade.net_pnl:.6g} {leverage}"
        )
    return "\n".join(lines)


if __name__ == "__main__":
    raise SystemExit(main())
