from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Iterator

from pnl_ledger.models import (
    PERP_FILL,
    PERP_FUNDING,
    ClosedTrade,
    DailyPnl,
    DrawdownEvent,
    EconomicEvent,
    EquityCurvePoint,
    MarketStats,
    MonthlyPnl,
    RawEvent,
    RecomputeRun,
    SyncRun,
    Wallet,
)
from pnl_ledger.storage.sqlite_store import iso_ts

DEFAULT_PAGE_SIZE = 1000


def connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def find_wallet(conn: sqlite3.Connection, address: str) -> Wallet | None:
    row = conn.execute(
        "SELECT wallet_id, address, created_at FROM wallets WHERE address = ?", (address,)
    ).fetchone()
    if row is None:
        return None
    return Wallet(wallet_id=row["wallet_id"], address=row["address"], created_at=row["created_at"])


def load_raw_events(
    conn: sqlite3.Connection, wallet_id: int, days: Iterable[date] | None = None
) -> list[RawEvent]:
    query = "SELECT * FROM raw_events WHERE wallet_id = ?"
    params: list[Any] = [wallet_id]
    if days is not None:
        day_list = sorted({day.isoformat() for day in days})
        if not day_list:
            return []
        query += f" AND day IN ({', '.join('?' for _ in day_list)})"
        params.extend(day_list)
    query += " ORDER BY ts, raw_event_id"
    events: list[RawEvent] = []
    for row in conn.execute(query, params).fetchall():
        events.append(
            RawEvent(
                wallet_id=row["wallet_id"],
                source_type=row["source_type"],
                event_kind=row["event_kind"],
                ts=_parse_iso(row["ts"]),
                unique_key=row["unique_key"],
                payload=_maybe_json(row["payload_json"]),
                raw_event_id=row["raw_event_id"],
            )
        )
    return events


def load_raw_event_days(conn: sqlite3.Connection, wallet_id: int) -> list[date]:
    rows = conn.execute(
        "SELECT DISTINCT day FROM raw_events WHERE wallet_id = ? ORDER BY day", (wallet_id,)
    ).fetchall()
    return [date.fromisoformat(row["day"]) for row in rows]


def load_event_days(
    conn: sqlite3.Connection,
    wallet_id: int,
    *,
    start_day: date | None = None,
    end_day: date | None = None,
) -> list[date]:
    query = "SELECT DISTINCT day FROM economic_events WHERE wallet_id = ?"
    params: list[Any] = [wallet_id]
    query, params = _day_range(query, params, "day", start_day, end_day)
    rows = conn.execute(query + " ORDER BY day", params).fetchall()
    return [date.fromisoformat(row["day"]) for row in rows]


def iter_day_events(
    conn: sqlite3.Connection, wallet_id: int, day: date, *, page_size: int = DEFAULT_PAGE_SIZE
) -> Iterator[EconomicEvent]:
    """Yield every event of one wallet/day, a page at a time."""
    yield from _iter_paged(
        conn,
        "SELECT * FROM economic_events WHERE wallet_id = ? AND day = ?",
        [wallet_id, day.isoformat()],
        page_size,
    )


def iter_events(
    conn: sqlite3.Connection,
    wallet_id: int,
    *,
    event_type: str | None = None,
    start_day: date | None = None,
    end_day: date | None = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Iterator[EconomicEvent]:
    query = "SELECT * FROM economic_events WHERE wallet_id = ?"
    params: list[Any] = [wallet_id]
    if event_type is not None:
        query += " AND event_type = ?"
        params.append(event_type)
    query, params = _day_range(query, params, "day", start_day, end_day)
    yield from _iter_paged(conn, query, params, page_size)


def load_fill_events(
    conn: sqlite3.Connection, wallet_id: int, *, page_size: int = DEFAULT_PAGE_SIZE
) -> list[EconomicEvent]:
    return list(iter_events(conn, wallet_id, event_type=PERP_FILL, page_size=page_size))


def load_funding_events(
    conn: sqlite3.Connection, wallet_id: int, *, page_size: int = DEFAULT_PAGE_SIZE
) -> list[EconomicEvent]:
    return list(iter_events(conn, wallet_id, event_type=PERP_FUNDING, page_size=page_size))


def load_daily_pnl(
    conn: sqlite3.Connection,
    wallet_id: int,
    *,
    start_day: date | None = None,
    end_day: date | None = None,
) -> list[DailyPnl]:
    query = "SELECT * FROM daily_pnl WHERE wallet_id = ?"
    params: list[Any] = [wallet_id]
    query, params = _day_range(query, params, "day", start_day, end_day)
    rows = conn.execute(query + " ORDER BY day", params).fetchall()
    return [
        DailyPnl(
            wallet_id=row["wallet_id"],
            day=date.fromisoformat(row["day"]),
            closed_pnl=row["closed_pnl"],
            funding=row["funding"],
            fees=row["fees"],
            perps_pnl=row["perps_pnl"],
            total_pnl=row["total_pnl"],
            volume=row["volume"],
            trades_count=row["trades_count"],
            cumulative_pnl=row["cumulative_pnl"],
            drawdown=row["drawdown"],
        )
        for row in rows
    ]


def load_monthly_pnl(
    conn: sqlite3.Connection,
    wallet_id: int,
    *,
    start_month: date | None = None,
    end_month: date | None = None,
) -> list[MonthlyPnl]:
    query = "SELECT * FROM monthly_pnl WHERE wallet_id = ?"
    params: list[Any] = [wallet_id]
    query, params = _day_range(query, params, "month", start_month, end_month)
    rows = conn.execute(query + " ORDER BY month", params).fetchall()
    return [
        MonthlyPnl(
            wallet_id=row["wallet_id"],
            month=date.fromisoformat(row["month"]),
            total_pnl=row["total_pnl"],
            closed_pnl=row["closed_pnl"],
            funding=row["funding"],
            volume=row["volume"],
            trading_days=row["trading_days"],
            profitable_days=row["profitable_days"],
        )
        for row in rows
    ]


def load_closed_trades(
    conn: sqlite3.Connection,
    wallet_id: int,
    *,
    market: str | None = None,
    limit: int | None = None,
) -> list[ClosedTrade]:
    query = "SELECT * FROM closed_trades WHERE wallet_id = ?"
    params: list[Any] = [wallet_id]
    if market:
        query += " AND market = ?"
        params.append(market)
    query += " ORDER BY exit_time, trade_id"
    if limit is not None:
        query += " LIMIT ?"
        params.append(int(limit))
    return [
        ClosedTrade(
            wallet_id=row["wallet_id"],
            market=row["market"],
            side=row["side"],
            entry_time=_parse_iso(row["entry_time"]),
            exit_time=_parse_iso(row["exit_time"]),
            avg_entry_price=row["avg_entry_price"],
            avg_exit_price=row["avg_exit_price"],
            size=row["size"],
            realized_pnl=row["realized_pnl"],
            fees=row["fees"],
            funding=row["funding"],
            effective_leverage=row["effective_leverage"],
        )
        for row in conn.execute(query, params).fetchall()
    ]


def count_closed_trades(
    conn: sqlite3.Connection, wallet_id: int, *, start: datetime, end: datetime
) -> int:
    """Count trades whose exit falls in [start, end)."""
    row = conn.execute(
        """
        SELECT COUNT(*) AS total FROM closed_trades
        WHERE wallet_id = ? AND exit_time >= ? AND exit_time < ?
        """,
        (wallet_id, iso_ts(start), iso_ts(end)),
    ).fetchone()
    return int(row["total"])


def load_equity_curve(conn: sqlite3.Connection, wallet_id: int) -> list[EquityCurvePoint]:
    rows = conn.execute(
        "SELECT * FROM equity_curve WHERE wallet_id = ? ORDER BY day", (wallet_id,)
    ).fetchall()
    points: list[EquityCurvePoint] = []
    for row in rows:
        values = dict(row)
        values["day"] = date.fromisoformat(values["day"])
        points.append(EquityCurvePoint(**values))
    return points


def load_drawdown_events(conn: sqlite3.Connection, wallet_id: int) -> list[DrawdownEvent]:
    rows = conn.execute(
        "SELECT * FROM drawdown_events WHERE wallet_id = ? ORDER BY peak_date, drawdown_id", (wallet_id,)
    ).fetchall()
    return [
        DrawdownEvent(
            wallet_id=row["wallet_id"],
            peak_date=date.fromisoformat(row["peak_date"]),
            trough_date=date.fromisoformat(row["trough_date"]),
            recovery_date=date.fromisoformat(row["recovery_date"]) if row["recovery_date"] else None,
            peak_equity=row["peak_equity"],
            trough_equity=row["trough_equity"],
            drawdown_depth=row["drawdown_depth"],
            drawdown_pct=row["drawdown_pct"],
            recovery_days=row["recovery_days"],
            is_recovered=bool(row["is_recovered"]),
        )
        for row in rows
    ]


def load_market_stats(conn: sqlite3.Connection, wallet_id: int) -> list[MarketStats]:
    rows = conn.execute(
        "SELECT * FROM market_stats WHERE wallet_id = ? ORDER BY total_pnl DESC, market", (wallet_id,)
    ).fetchall()
    return [MarketStats(**dict(row)) for row in rows]


def load_latest_sync_run(conn: sqlite3.Connection, wallet_id: int) -> SyncRun | None:
    row = conn.execute(
        "SELECT * FROM sync_runs WHERE wallet_id = ? ORDER BY run_id DESC LIMIT 1", (wallet_id,)
    ).fetchone()
    return SyncRun(**dict(row)) if row else None


def load_latest_recompute_run(conn: sqlite3.Connection, wallet_id: int) -> RecomputeRun | None:
    row = conn.execute(
        "SELECT * FROM recompute_runs WHERE wallet_id = ? ORDER BY run_id DESC LIMIT 1", (wallet_id,)
    ).fetchone()
    return RecomputeRun(**dict(row)) if row else None


def load_sync_run(conn: sqlite3.Connection, run_id: int) -> SyncRun:
    row = conn.execute("SELECT * FROM sync_runs WHERE run_id = ?", (run_id,)).fetchone()
    if row is None:
        raise KeyError(f"Unknown sync run {run_id}")
    return SyncRun(**dict(row))


def load_recompute_run(conn: sqlite3.Connection, run_id: int) -> RecomputeRun:
    row = conn.execute("SELECT * FROM recompute_runs WHERE run_id = ?", (run_id,)).fetchone()
    if row is None:
        raise KeyError(f"Unknown recompute run {run_id}")
    return RecomputeRun(**dict(row))


def _iter_paged(
    conn: sqlite3.Connection, query: str, params: list[Any], page_size: int
) -> Iterator[EconomicEvent]:
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    offset = 0
    while True:
        rows = conn.execute(
            query + " ORDER BY ts, event_id LIMIT ? OFFSET ?", [*params, page_size, offset]
        ).fetchall()
        for row in rows:
            yield _economic_event(row)
        if len(rows) < page_size:
            break
        offset += page_size


def _economic_event(row: sqlite3.Row) -> EconomicEvent:
    return EconomicEvent(
        wallet_id=row["wallet_id"],
        ts=_parse_iso(row["ts"]),
        event_type=row["event_type"],
        venue=row["venue"],
        market=row["market"],
        side=row["side"],
        size=row["size"],
        exec_price=row["exec_price"],
        usd_value=row["usd_value"],
        realized_pnl_usd=row["realized_pnl_usd"],
        funding_usd=row["funding_usd"],
        fee_usd=row["fee_usd"],
        tx_hash=row["tx_hash"],
        meta=_maybe_json(row["meta_json"]),
        raw_event_id=row["raw_event_id"],
        event_id=row["event_id"],
    )


def _day_range(
    query: str, params: list[Any], column: str, start: date | None, end: date | None
) -> tuple[str, list[Any]]:
    if start is not None:
        query += f" AND {column} >= ?"
        params.append(start.isoformat())
    if end is not None:
        query += f" AND {column} <= ?"
        params.append(end.isoformat())
    return query, params


def _maybe_json(value: Any) -> Any:
    if value is None:
        return {}
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return value


def _parse_iso(value: str | None) -> datetime:
    if value is None:
        raise ValueError("Missing timestamp")
    return datetime.fromisoformat(value)
