from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from pnl_ledger.errors import RunInProgressError
from pnl_ledger.models import (
    STATUS_FAILED,
    STATUS_RUNNING,
    ClosedTrade,
    DailyPnl,
    DrawdownEvent,
    EconomicEvent,
    EquityCurvePoint,
    MarketStats,
    MonthlyPnl,
    RawEvent,
    Wallet,
)

SCHEMA_VERSION = 1
METRICS_VERSION = 1


def connect(db_path: Path | str) -> sqlite3.Connection:
    path = Path(db_path)
    if str(path) != ":memory:":
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS wallets (
            wallet_id INTEGER PRIMARY KEY AUTOINCREMENT,
            address TEXT NOT NULL UNIQUE,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS raw_events (
            raw_event_id INTEGER PRIMARY KEY AUTOINCREMENT,
            wallet_id INTEGER NOT NULL REFERENCES wallets(wallet_id),
            source_type TEXT NOT NULL,
            event_kind TEXT NOT NULL,
            ts TEXT NOT NULL,
            day TEXT NOT NULL,
            unique_key TEXT NOT NULL UNIQUE,
            payload_json TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS economic_events (
            event_id INTEGER PRIMARY KEY AUTOINCREMENT,
            wallet_id INTEGER NOT NULL REFERENCES wallets(wallet_id),
            raw_event_id INTEGER REFERENCES raw_events(raw_event_id),
            ts TEXT NOT NULL,
            day TEXT NOT NULL,
            event_type TEXT NOT NULL,
            venue TEXT NOT NULL,
            market TEXT NOT NULL,
            side TEXT,
            size REAL,
            exec_price REAL,
            usd_value REAL,
            realized_pnl_usd REAL,
            funding_usd REAL,
            fee_usd REAL,
            tx_hash TEXT,
            meta_json TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_pnl (
            wallet_id INTEGER NOT NULL REFERENCES wallets(wallet_id),
            day TEXT NOT NULL,
            closed_pnl REAL NOT NULL,
            funding REAL NOT NULL,
            fees REAL NOT NULL,
            perps_pnl REAL NOT NULL,
            total_pnl REAL NOT NULL,
            volume REAL NOT NULL,
            trades_count INTEGER NOT NULL,
            cumulative_pnl REAL NOT NULL,
            drawdown REAL NOT NULL,
            PRIMARY KEY (wallet_id, day)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS monthly_pnl (
            wallet_id INTEGER NOT NULL REFERENCES wallets(wallet_id),
            month TEXT NOT NULL,
            total_pnl REAL NOT NULL,
            closed_pnl REAL NOT NULL,
            funding REAL NOT NULL,
            volume REAL NOT NULL,
            trading_days INTEGER NOT NULL,
            profitable_days INTEGER NOT NULL,
            PRIMARY KEY (wallet_id, month)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS closed_trades (
            trade_id INTEGER PRIMARY KEY AUTOINCREMENT,
            wallet_id INTEGER NOT NULL REFERENCES wallets(wallet_id),
            market TEXT NOT NULL,
            side TEXT NOT NULL,
            entry_time TEXT NOT NULL,
            exit_time TEXT NOT NULL,
            avg_entry_price REAL NOT NULL,
            avg_exit_price REAL NOT NULL,
            size REAL NOT NULL,
            notional_value REAL NOT NULL,
            effective_leverage REAL,
            realized_pnl REAL NOT NULL,
            fees REAL NOT NULL,
            funding REAL NOT NULL,
            net_pnl REAL NOT NULL,
            is_win INTEGER NOT NULL,
            trade_duration_hours REAL NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS equity_curve (
            wallet_id INTEGER NOT NULL REFERENCES wallets(wallet_id),
            day TEXT NOT NULL,
            starting_equity REAL NOT NULL,
            ending_equity REAL NOT NULL,
            trading_pnl REAL NOT NULL,
            funding_pnl REAL NOT NULL,
            fees REAL NOT NULL,
            net_change REAL NOT NULL,
            cumulative_trading_pnl REAL NOT NULL,
            cumulative_funding_pnl REAL NOT NULL,
            cumulative_fees REAL NOT NULL,
            cumulative_net_pnl REAL NOT NULL,
            peak_equity REAL NOT NULL,
            drawdown REAL NOT NULL,
            drawdown_pct REAL NOT NULL,
            PRIMARY KEY (wallet_id, day)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS drawdown_events (
            drawdown_id INTEGER PRIMARY KEY AUTOINCREMENT,
            wallet_id INTEGER NOT NULL REFERENCES wallets(wallet_id),
            peak_date TEXT NOT NULL,
            trough_date TEXT NOT NULL,
            recovery_date TEXT,
            peak_equity REAL NOT NULL,
            trough_equity REAL NOT NULL,
            drawdown_depth REAL NOT NULL,
            drawdown_pct REAL NOT NULL,
            recovery_days INTEGER,
            is_recovered INTEGER NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS market_stats (
            wallet_id INTEGER NOT NULL REFERENCES wallets(wallet_id),
            market TEXT NOT NULL,
            total_trades INTEGER NOT NULL,
            wins INTEGER NOT NULL,
            losses INTEGER NOT NULL,
            win_rate REAL NOT NULL,
            total_pnl REAL NOT NULL,
            total_volume REAL NOT NULL,
            total_fees REAL NOT NULL,
            total_funding REAL NOT NULL,
            avg_trade_size REAL NOT NULL,
            avg_leverage REAL,
            avg_win REAL NOT NULL,
            avg_loss REAL NOT NULL,
            profit_factor REAL,
            PRIMARY KEY (wallet_id, market)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sync_runs (
            run_id INTEGER PRIMARY KEY AUTOINCREMENT,
            wallet_id INTEGER NOT NULL REFERENCES wallets(wallet_id),
            status TEXT NOT NULL,
            started_at TEXT NOT NULL,
            completed_at TEXT,
            fills_ingested INTEGER NOT NULL DEFAULT 0,
            funding_ingested INTEGER NOT NULL DEFAULT 0,
            events_ingested INTEGER NOT NULL DEFAULT 0,
            days_recomputed INTEGER NOT NULL DEFAULT 0,
            fills_status TEXT,
            funding_status TEXT,
            error_message TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS recompute_runs (
            run_id INTEGER PRIMARY KEY AUTOINCREMENT,
            wallet_id INTEGER NOT NULL REFERENCES wallets(wallet_id),
            status TEXT NOT NULL,
            started_at TEXT NOT NULL,
            completed_at TEXT,
            days_total INTEGER NOT NULL DEFAULT 0,
            days_processed INTEGER NOT NULL DEFAULT 0,
            months_processed INTEGER NOT NULL DEFAULT 0,
            closed_trades INTEGER NOT NULL DEFAULT 0,
            error_message TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            schema_version INTEGER NOT NULL,
            metrics_version INTEGER NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        INSERT OR IGNORE INTO schema_version (id, schema_version, metrics_version, updated_at)
        VALUES (1, ?, ?, CURRENT_TIMESTAMP)
        """,
        (SCHEMA_VERSION, METRICS_VERSION),
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_raw_events_wallet_day ON raw_events (wallet_id, day)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_economic_events_wallet_day ON economic_events (wallet_id, day)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_sync_runs_wallet ON sync_runs (wallet_id, status)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_recompute_runs_wallet ON recompute_runs (wallet_id, status)")
    conn.commit()


def get_or_create_wallet(conn: sqlite3.Connection, address: str) -> Wallet:
    conn.execute(
        "INSERT OR IGNORE INTO wallets (address, created_at) VALUES (?, ?)",
        (address, utc_now()),
    )
    conn.commit()
    row = conn.execute(
        "SELECT wallet_id, address, created_at FROM wallets WHERE address = ?", (address,)
    ).fetchone()
    return Wallet(wallet_id=row["wallet_id"], address=row["address"], created_at=row["created_at"])


def insert_raw_events(conn: sqlite3.Connection, events: Iterable[RawEvent]) -> int:
    """Insert raw events, silently skipping unique_key duplicates.

    Returns the number of rows actually inserted.
    """
    rows = [
        {
            "wallet_id": event.wallet_id,
            "source_type": event.source_type,
            "event_kind": event.event_kind,
            "ts": iso_ts(event.ts),
            "day": event.day.isoformat(),
            "unique_key": event.unique_key,
            "payload_json": _json_dump(event.payload),
        }
        for event in events
    ]
    if not rows:
        return 0
    before = conn.total_changes
    conn.executemany(
        """
        INSERT INTO raw_events (wallet_id, source_type, event_kind, ts, day, unique_key, payload_json)
        VALUES (:wallet_id, :source_type, :event_kind, :ts, :day, :unique_key, :payload_json)
        ON CONFLICT(unique_key) DO NOTHING
        """,
        rows,
    )
    conn.commit()
    return conn.total_changes - before


def replace_economic_events(
    conn: sqlite3.Connection,
    wallet_id: int,
    days: Iterable[date] | None,
    events: Iterable[EconomicEvent],
) -> int:
    """Swap the wallet's canonical events for ``days`` (all days when None)."""
    rows = [_economic_event_row(event) for event in events]
    with conn:
        if days is None:
            conn.execute("DELETE FROM economic_events WHERE wallet_id = ?", (wallet_id,))
        else:
            conn.executemany(
                "DELETE FROM economic_events WHERE wallet_id = ? AND day = ?",
                [(wallet_id, day.isoformat()) for day in sorted(set(days))],
            )
        conn.executemany(
            """
            INSERT INTO economic_events (
                wallet_id, raw_event_id, ts, day, event_type, venue, market, side, size, exec_price,
                usd_value, realized_pnl_usd, funding_usd, fee_usd, tx_hash, meta_json
            )
            VALUES (
                :wallet_id, :raw_event_id, :ts, :day, :event_type, :venue, :market, :side, :size, :exec_price,
                :usd_value, :realized_pnl_usd, :funding_usd, :fee_usd, :tx_hash, :meta_json
            )
            """,
            rows,
        )
    return len(rows)


def delete_pnl_aggregates(conn: sqlite3.Connection, wallet_id: int) -> None:
    with conn:
        conn.execute("DELETE FROM daily_pnl WHERE wallet_id = ?", (wallet_id,))
        conn.execute("DELETE FROM monthly_pnl WHERE wallet_id = ?", (wallet_id,))


def upsert_daily_pnl(conn: sqlite3.Connection, rows: Iterable[DailyPnl]) -> int:
    payload = []
    for row in rows:
        item = asdict(row)
        item["day"] = row.day.isoformat()
        payload.append(item)
    conn.executemany(
        """
        INSERT INTO daily_pnl (
            wallet_id, day, closed_pnl, funding, fees, perps_pnl, total_pnl, volume, trades_count,
            cumulative_pnl, drawdown
        )
        VALUES (
            :wallet_id, :day, :closed_pnl, :funding, :fees, :perps_pnl, :total_pnl, :volume, :trades_count,
            :cumulative_pnl, :drawdown
        )
        ON CONFLICT(wallet_id, day) DO UPDATE SET
            closed_pnl=excluded.closed_pnl,
            funding=excluded.funding,
            fees=excluded.fees,
            perps_pnl=excluded.perps_pnl,
            total_pnl=excluded.total_pnl,
            volume=excluded.volume,
            trades_count=excluded.trades_count,
            cumulative_pnl=excluded.cumulative_pnl,
            drawdown=excluded.drawdown
        """,
        payload,
    )
    conn.commit()
    return len(payload)


def delete_daily_pnl(conn: sqlite3.Connection, wallet_id: int, days: Iterable[date]) -> None:
    conn.executemany(
        "DELETE FROM daily_pnl WHERE wallet_id = ? AND day = ?",
        [(wallet_id, day.isoformat()) for day in days],
    )
    conn.commit()


def update_daily_running_totals(
    conn: sqlite3.Connection, wallet_id: int, totals: Iterable[tuple[date, float, float]]
) -> None:
    conn.executemany(
        "UPDATE daily_pnl SET cumulative_pnl = ?, drawdown = ? WHERE wallet_id = ? AND day = ?",
        [(cumulative, drawdown, wallet_id, day.isoformat()) for day, cumulative, drawdown in totals],
    )
    conn.commit()


def upsert_monthly_pnl(conn: sqlite3.Connection, rows: Iterable[MonthlyPnl]) -> int:
    payload = []
    for row in rows:
        item = asdict(row)
        item["month"] = row.month.isoformat()
        payload.append(item)
    conn.executemany(
        """
        INSERT INTO monthly_pnl (
            wallet_id, month, total_pnl, closed_pnl, funding, volume, trading_days, profitable_days
        )
        VALUES (
            :wallet_id, :month, :total_pnl, :closed_pnl, :funding, :volume, :trading_days, :profitable_days
        )
        ON CONFLICT(wallet_id, month) DO UPDATE SET
            total_pnl=excluded.total_pnl,
            closed_pnl=excluded.closed_pnl,
            funding=excluded.funding,
            volume=excluded.volume,
            trading_days=excluded.trading_days,
            profitable_days=excluded.profitable_days
        """,
        payload,
    )
    conn.commit()
    return len(payload)


def delete_monthly_pnl(conn: sqlite3.Connection, wallet_id: int, months: Iterable[date]) -> None:
    conn.executemany(
        "DELETE FROM monthly_pnl WHERE wallet_id = ? AND month = ?",
        [(wallet_id, month.isoformat()) for month in months],
    )
    conn.commit()


def replace_closed_trades(conn: sqlite3.Connection, wallet_id: int, trades: Iterable[ClosedTrade]) -> int:
    rows = [
        {
            "wallet_id": wallet_id,
            "market": trade.market,
            "side": trade.side,
            "entry_time": iso_ts(trade.entry_time),
            "exit_time": iso_ts(trade.exit_time),
            "avg_entry_price": trade.avg_entry_price,
            "avg_exit_price": trade.avg_exit_price,
            "size": trade.size,
            "notional_value": trade.notional_value,
            "effective_leverage": trade.effective_leverage,
            "realized_pnl": trade.realized_pnl,
            "fees": trade.fees,
            "funding": trade.funding,
            "net_pnl": trade.net_pnl,
            "is_win": 1 if trade.is_win else 0,
            "trade_duration_hours": trade.duration_hours,
        }
        for trade in trades
    ]
    with conn:
        conn.execute("DELETE FROM closed_trades WHERE wallet_id = ?", (wallet_id,))
        conn.executemany(
            """
            INSERT INTO closed_trades (
                wallet_id, market, side, entry_time, exit_time, avg_entry_price, avg_exit_price, size,
                notional_value, effective_leverage, realized_pnl, fees, funding, net_pnl, is_win,
                trade_duration_hours
            )
            VALUES (
                :wallet_id, :market, :side, :entry_time, :exit_time, :avg_entry_price, :avg_exit_price, :size,
                :notional_value, :effective_leverage, :realized_pnl, :fees, :funding, :net_pnl, :is_win,
                :trade_duration_hours
            )
            """,
            rows,
        )
    return len(rows)


def replace_equity_curve(conn: sqlite3.Connection, wallet_id: int, points: Iterable[EquityCurvePoint]) -> int:
    rows = []
    for point in points:
        item = asdict(point)
        item["day"] = point.day.isoformat()
        rows.append(item)
    with conn:
        conn.execute("DELETE FROM equity_curve WHERE wallet_id = ?", (wallet_id,))
        conn.executemany(
            """
            INSERT INTO equity_curve (
                wallet_id, day, starting_equity, ending_equity, trading_pnl, funding_pnl, fees, net_change,
                cumulative_trading_pnl, cumulative_funding_pnl, cumulative_fees, cumulative_net_pnl,
                peak_equity, drawdown, drawdown_pct
            )
            VALUES (
                :wallet_id, :day, :starting_equity, :ending_equity, :trading_pnl, :funding_pnl, :fees, :net_change,
                :cumulative_trading_pnl, :cumulative_funding_pnl, :cumulative_fees, :cumulative_net_pnl,
                :peak_equity, :drawdown, :drawdown_pct
            )
            """,
            rows,
        )
    return len(rows)


def replace_drawdown_events(conn: sqlite3.Connection, wallet_id: int, events: Iterable[DrawdownEvent]) -> int:
    rows = []
    for event in events:
        item = asdict(event)
        item["peak_date"] = event.peak_date.isoformat()
        item["trough_date"] = event.trough_date.isoformat()
        item["recovery_date"] = event.recovery_date.isoformat() if event.recovery_date else None
        item["is_recovered"] = 1 if event.is_recovered else 0
        rows.append(item)
    with conn:
        conn.execute("DELETE FROM drawdown_events WHERE wallet_id = ?", (wallet_id,))
        conn.executemany(
            """
            INSERT INTO drawdown_events (
                wallet_id, peak_date, trough_date, recovery_date, peak_equity, trough_equity,
                drawdown_depth, drawdown_pct, recovery_days, is_recovered
            )
            VALUES (
                :wallet_id, :peak_date, :trough_date, :recovery_date, :peak_equity, :trough_equity,
                :drawdown_depth, :drawdown_pct, :recovery_days, :is_recovered
            )
            """,
            rows,
        )
    return len(rows)


def replace_market_stats(conn: sqlite3.Connection, wallet_id: int, stats: Iterable[MarketStats]) -> int:
    rows = [asdict(item) for item in stats]
    with conn:
        conn.execute("DELETE FROM market_stats WHERE wallet_id = ?", (wallet_id,))
        conn.executemany(
            """
            INSERT INTO market_stats (
                wallet_id, market, total_trades, wins, losses, win_rate, total_pnl, total_volume,
                total_fees, total_funding, avg_trade_size, avg_leverage, avg_win, avg_loss, profit_factor
            )
            VALUES (
                :wallet_id, :market, :total_trades, :wins, :losses, :win_rate, :total_pnl, :total_volume,
                :total_fees, :total_funding, :avg_trade_size, :avg_leverage, :avg_win, :avg_loss, :profit_factor
            )
            """,
            rows,
        )
    return len(rows)


def create_sync_run(conn: sqlite3.Connection, wallet_id: int) -> int:
    run_id = _insert_run(conn, "sync_runs", wallet_id)
    conn.commit()
    return run_id


def update_sync_run(conn: sqlite3.Connection, run_id: int, **fields: Any) -> None:
    _update_run(conn, "sync_runs", run_id, fields)


def create_recompute_run(conn: sqlite3.Connection, wallet_id: int) -> int:
    run_id = _insert_run(conn, "recompute_runs", wallet_id)
    conn.commit()
    return run_id


def update_recompute_run(conn: sqlite3.Connection, run_id: int, **fields: Any) -> None:
    _update_run(conn, "recompute_runs", run_id, fields)


def start_run(conn: sqlite3.Connection, wallet_id: int, kind: str, *, stale_before: datetime) -> tuple[int, int]:
    """Claim the wallet for a new sync or recompute run.

    Stale expiry, the running-run check and the insert share one
    ``BEGIN IMMEDIATE`` transaction, so a second connection waits on the
    write lock and then sees the first run. Returns ``(run_id, expired)``.
    Raises RunInProgressError when another run is live.
    """
    table = _RUN_TABLES[kind]
    if conn.in_transaction:
        conn.commit()
    conn.execute("BEGIN IMMEDIATE")
    run_id = None
    try:
        expired = _fail_stale_runs(conn, wallet_id, iso_ts(stale_before))
        running = find_running_run(conn, wallet_id)
        if running is None:
            run_id = _insert_run(conn, table, wallet_id)
    except BaseException:
        conn.rollback()
        raise
    conn.commit()
    if running is not None:
        raise RunInProgressError(running[0], running[1], wallet_id)
    return run_id, expired


def find_running_run(conn: sqlite3.Connection, wallet_id: int) -> tuple[str, int] | None:
    """Return ``(kind, run_id)`` of a running sync or recompute for the wallet."""
    for kind, table in _RUN_TABLES.items():
        row = conn.execute(
            f"SELECT run_id FROM {table} WHERE wallet_id = ? AND status = ? ORDER BY run_id LIMIT 1",
            (wallet_id, STATUS_RUNNING),
        ).fetchone()
        if row is not None:
            return kind, int(row["run_id"])
    return None


_RUN_TABLES = {"sync": "sync_runs", "recompute": "recompute_runs"}

_RUN_COLUMNS = {
    "sync_runs": {
        "status",
        "completed_at",
        "fills_ingested",
        "funding_ingested",
        "events_ingested",
        "days_recomputed",
        "fills_status",
        "funding_status",
        "error_message",
    },
    "recompute_runs": {
        "status",
        "completed_at",
        "days_total",
        "days_processed",
        "months_processed",
        "closed_trades",
        "error_message",
    },
}


def _update_run(conn: sqlite3.Connection, table: str, run_id: int, fields: dict[str, Any]) -> None:
    unknown = set(fields) - _RUN_COLUMNS[table]
    if unknown:
        raise ValueError(f"Unknown {table} columns: {sorted(unknown)}")
    if not fields:
        return
    assignments = ", ".join(f"{name} = :{name}" for name in fields)
    conn.execute(f"UPDATE {table} SET {assignments} WHERE run_id = :run_id", {**fields, "run_id": run_id})
    conn.commit()


def _insert_run(conn: sqlite3.Connection, table: str, wallet_id: int) -> int:
    cursor = conn.execute(
        f"INSERT INTO {table} (wallet_id, status, started_at) VALUES (?, ?, ?)",
        (wallet_id, STATUS_RUNNING, utc_now()),
    )
    return int(cursor.lastrowid)


def _fail_stale_runs(conn: sqlite3.Connection, wallet_id: int, cutoff: str) -> int:
    changed = 0
    for table in _RUN_TABLES.values():
        cursor = conn.execute(
            f"""
            UPDATE {table}
            SET status = ?, completed_at = ?, error_message = ?
            WHERE wallet_id = ? AND status = ? AND started_at < ?
            """,
            (STATUS_FAILED, utc_now(), "Run abandoned (stale)", wallet_id, STATUS_RUNNING, cutoff),
        )
        changed += cursor.rowcount
    return changed


def _economic_event_row(event: EconomicEvent) -> dict[str, Any]:
    return {
        "wallet_id": event.wallet_id,
        "raw_event_id": event.raw_event_id,
        "ts": iso_ts(event.ts),
        "day": event.day.isoformat(),
        "event_type": event.event_type,
        "venue": event.venue,
        "market": event.market,
        "side": event.side,
        "size": event.size,
        "exec_price": event.exec_price,
        "usd_value": event.usd_value,
        "realized_pnl_usd": event.realized_pnl_usd,
        "funding_usd": event.funding_usd,
        "fee_usd": event.fee_usd,
        "tx_hash": event.tx_hash,
        "meta_json": _json_dump(event.meta),
    }


def iso_ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _json_dump(value: object) -> str:
    if value is None:
        return "{}"
    if hasattr(value, "__dataclass_fields__"):
        value = asdict(value)
    return json.dumps(value, sort_keys=True, default=str)
