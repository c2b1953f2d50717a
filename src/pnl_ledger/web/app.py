from __future__ import annotations

import os
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request

from pnl_ledger import reports
from pnl_ledger.config.accounts import load_accounts_config, normalize_wallet
from pnl_ledger.config.app_config import apply_api_settings, configure_logging, load_app_config, load_dotenv
from pnl_ledger.errors import InvalidWalletError, RunInProgressError, WalletNotFoundError
from pnl_ledger.ingest.hyperliquid_api import HyperliquidInfoClient, HyperliquidInfoConfig
from pnl_ledger.models import Wallet
from pnl_ledger.recompute import recompute_wallet
from pnl_ledger.storage import sqlite_reader
from pnl_ledger.storage.sqlite_store import connect as sqlite_connect
from pnl_ledger.storage.sqlite_store import init_db
from pnl_ledger.sync_api import sync_wallet

app = FastAPI(title="PnL Ledger")


@app.post("/api/sync")
def sync_api(payload: dict[str, Any]) -> dict[str, Any]:
    wallet = _wallet_param(payload.get("wallet"))
    app_config = load_app_config()
    conn = _open_db()
    try:
        run = sync_wallet(
            conn,
            _info_client(),
            wallet,
            start_ms=_optional_int(payload.get("start_ms"), "start_ms"),
            end_ms=_optional_int(payload.get("end_ms"), "end_ms"),
            full_rebuild=bool(payload.get("full_rebuild", False)),
            settings=app_config.sync,
            initial_equity=_starting_equity(wallet),
        )
    except RunInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        conn.close()
    return {"success": True, "wallet": wallet, **reports.run_row(run)}


@app.post("/api/recompute")
def recompute_api(payload: dict[str, Any]) -> dict[str, Any]:
    wallet = _wallet_param(payload.get("wallet"))
    app_config = load_app_config()
    conn = _open_db()
    try:
        run = recompute_wallet(
            conn,
            wallet,
            start_day=_optional_day(payload.get("start_day"), "start_day"),
            end_day=_optional_day(payload.get("end_day"), "end_day"),
            initial_equity=_starting_equity(wallet),
            page_size=app_config.sync.read_page_size,
            stale_run_minutes=app_config.sync.stale_run_minutes,
        )
    except WalletNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RunInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        conn.close()
    return {"success": True, "wallet": wallet, **reports.run_row(run)}


@app.get("/api/calendar")
def calendar_api(request: Request) -> dict[str, Any]:
    params = request.query_params
    wallet = _wallet_param(params.get("wallet"))
    year_raw = params.get("year")
    try:
        year = int(year_raw) if year_raw else datetime.now(timezone.utc).year
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid year.") from exc
    conn = _open_db()
    try:
        return reports.calendar(
            conn,
            wallet,
            year=year,
            view=params.get("view") or "total",
            product=params.get("product") or "all",
            tz=params.get("tz") or "utc",
            page_size=load_app_config().sync.read_page_size,
        )
    finally:
        conn.close()


@app.get("/api/progress")
def progress_api(request: Request) -> dict[str, Any]:
    params = request.query_params
    wallet = _wallet_param(params.get("wallet"))
    kind = params.get("kind") or "sync"
    if kind not in reports.PROGRESS_KINDS:
        raise HTTPException(status_code=400, detail="kind must be 'sync' or 'recompute'.")
    conn = _open_db()
    try:
        return reports.progress(conn, wallet, kind)
    except WalletNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    finally:
        conn.close()


@app.get("/api/day")
def day_api(request: Request) -> dict[str, Any]:
    params = request.query_params
    wallet = _wallet_param(params.get("wallet"))
    day = _optional_day(params.get("date"), "date")
    if day is None:
        raise HTTPException(status_code=400, detail="date parameter is required")
    conn = _open_db()
    try:
        return reports.day_detail(conn, wallet, day, page_size=load_app_config().sync.read_page_size)
    except WalletNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    finally:
        conn.close()


@app.get("/api/summary")
def summary_api(request: Request) -> dict[str, Any]:
    wallet = _wallet_param(request.query_params.get("wallet"))
    conn = _open_db()
    try:
        return reports.summary(conn, wallet)
    except WalletNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    finally:
        conn.close()


@app.get("/api/equity-curve")
def equity_curve_api(request: Request) -> dict[str, Any]:
    wallet = _wallet_param(request.query_params.get("wallet"))
    conn = _open_db()
    try:
        record = _require_wallet(conn, wallet)
        points = sqlite_reader.load_equity_curve(conn, record.wallet_id)
    finally:
        conn.close()
    return {"wallet": wallet, "points": [reports.equity_row(point) for point in points]}


@app.get("/api/closed-trades")
def closed_trades_api(request: Request) -> dict[str, Any]:
    params = request.query_params
    wallet = _wallet_param(params.get("wallet"))
    limit = _optional_int(params.get("limit"), "limit")
    conn = _open_db()
    try:
        record = _require_wallet(conn, wallet)
        trades = sqlite_reader.load_closed_trades(
            conn, record.wallet_id, market=params.get("market"), limit=limit
        )
    finally:
        conn.close()
    return {"wallet": wallet, "trades": [reports.trade_row(trade) for trade in trades]}


@app.get("/api/market-stats")
def market_stats_api(request: Request) -> dict[str, Any]:
    wallet = _wallet_param(request.query_params.get("wallet"))
    conn = _open_db()
    try:
        record = _require_wallet(conn, wallet)
        stats = sqlite_reader.load_market_stats(conn, record.wallet_id)
    finally:
        conn.close()
    return {"wallet": wallet, "markets": [reports.market_row(item) for item in stats]}


@app.get("/api/drawdowns")
def drawdowns_api(request: Request) -> dict[str, Any]:
    wallet = _wallet_param(request.query_params.get("wallet"))
    conn = _open_db()
    try:
        record = _require_wallet(conn, wallet)
        events = sqlite_reader.load_drawdown_events(conn, record.wallet_id)
    finally:
        conn.close()
    return {"wallet": wallet, "drawdowns": [reports.drawdown_row(event) for event in events]}


def _resolve_db_path() -> Path:
    override = os.environ.get("PNL_LEDGER_DB")
    if override:
        return Path(override)
    return load_app_config().app.db_path


def _open_db() -> sqlite3.Connection:
    conn = sqlite_connect(_resolve_db_path())
    init_db(conn)
    return conn


def _info_client() -> HyperliquidInfoClient:
    app_config = load_app_config()
    env = dict(os.environ)
    env.update(load_dotenv(app_config.app.env_path))
    return HyperliquidInfoClient(HyperliquidInfoConfig.from_env(apply_api_settings(env, app_config)))


def _starting_equity(address: str) -> float | None:
    config_path = Path(os.environ.get("PNL_LEDGER_ACCOUNTS_CONFIG", "config/accounts.toml"))
    for wallet in load_accounts_config(config_path).wallets.values():
        if wallet.address == address:
            return wallet.starting_equity
    return None


def _wallet_param(value: Any) -> str:
    try:
        return normalize_wallet(value)
    except InvalidWalletError as exc:
        raise HTTPException(status_code=400, detail="Invalid wallet address format") from exc


def _require_wallet(conn: sqlite3.Connection, wallet: str) -> Wallet:
    try:
        return reports.require_wallet(conn, wallet)
    except WalletNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _optional_int(value: Any, name: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}.") from exc


def _optional_day(value: Any, name: str) -> date | None:
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}.") from exc


def main() -> None:
    import uvicorn

    app_config = load_app_config()
    configure_logging(app_config.logging)
    uvicorn.run(
        "pnl_ledger.web.app:app",
        host=app_config.app.host,
        port=app_config.app.port,
        reload=app_config.app.reload,
    )


if __name__ == "__main__":
    main()
