from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping

PERP_FILL = "PERP_FILL"
PERP_FUNDING = "PERP_FUNDING"
PERP_FEE = "PERP_FEE"
SPOT_BUY = "SPOT_BUY"
SPOT_SELL = "SPOT_SELL"
SPOT_TRANSFER_IN = "SPOT_TRANSFER_IN"
SPOT_TRANSFER_OUT = "SPOT_TRANSFER_OUT"

EVENT_TYPES = (
    PERP_FILL,
    PERP_FUNDING,
    PERP_FEE,
    SPOT_BUY,
    SPOT_SELL,
    SPOT_TRANSFER_IN,
    SPOT_TRANSFER_OUT,
)

KIND_FILL = "fill"
KIND_FUNDING = "funding"

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

FETCH_OK = "ok"
FETCH_ERROR = "error"
FETCH_TIMEOUT = "timeout"


@dataclass(frozen=True)
class Wallet:
    wallet_id: int
    address: str
    created_at: str


@dataclass
class RawEvent:
    wallet_id: int
    source_type: str
    event_kind: str
    ts: datetime
    unique_key: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    raw_event_id: int | None = None

    @property
    def day(self) -> date:
        return self.ts.date()


@dataclass
class EconomicEvent:
    wallet_id: int
    ts: datetime
    event_type: str
    venue: str
    market: str
    side: str | None = None
    size: float | None = None
    exec_price: float | None = None
    usd_value: float | None = None
    realized_pnl_usd: float | None = None
    funding_usd: float | None = None
    fee_usd: float | None = None
    tx_hash: str | None = None
    meta: Mapping[str, Any] = field(default_factory=dict)
    raw_event_id: int | None = None
    event_id: int | None = None

    @property
    def day(self) -> date:
        return self.ts.date()


@dataclass(frozen=True)
class DailyPnl:
    wallet_id: int
    day: date
    closed_pnl: float
    funding: float
    fees: float
    perps_pnl: float
    total_pnl: float
    volume: float
    trades_count: int
    cumulative_pnl: float = 0.0
    drawdown: float = 0.0


@dataclass(frozen=True)
class MonthlyPnl:
    wallet_id: int
    month: date
    total_pnl: float
    closed_pnl: float
    funding: float
    volume: float
    trading_days: int
    profitable_days: int


@dataclass
class ClosedTrade:
    wallet_id: int
    market: str
    side: str
    entry_time: datetime
    exit_time: datetime
    avg_entry_price: float
    avg_exit_price: float
    size: float
    realized_pnl: float
    fees: float
    funding: float = 0.0
    effective_leverage: float | None = None

    @property
    def net_pnl(self) -> float:
        return self.realized_pnl + self.funding - self.fees

    @property
    def is_win(self) -> bool:
        return self.net_pnl > 0

    @property
    def notional_value(self) -> float:
        return self.size * self.avg_entry_price

    @property
    def duration_hours(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds() / 3600.0


@dataclass(frozen=True)
class EquityCurvePoint:
    wallet_id: int
    day: date
    starting_equity: float
    ending_equity: float
    trading_pnl: float
    funding_pnl: float
    fees: float
    net_change: float
    cumulative_trading_pnl: float
    cumulative_funding_pnl: float
    cumulative_fees: float
    cumulative_net_pnl: float
    peak_equity: float
    drawdown: float
    drawdown_pct: float


@dataclass(frozen=True)
class DrawdownEvent:
    wallet_id: int
    peak_date: date
    trough_date: date
    recovery_date: date | None
    peak_equity: float
    trough_equity: float
    drawdown_depth: float
    drawdown_pct: float
    recovery_days: int | None
    is_recovered: bool


@dataclass(frozen=True)
class MarketStats:
    wallet_id: int
    market: str
    total_trades: int
    wins: int
    losses: int
    win_rate: float
    total_pnl: float
    total_volume: float
    total_fees: float
    total_funding: float
    avg_trade_size: float
    avg_leverage: float | None
    avg_win: float
    avg_loss: float
    profit_factor: float | None


@dataclass
class SyncRun:
    run_id: int
    wallet_id: int
    status: str
    started_at: str
    completed_at: str | None = None
    fills_ingested: int = 0
    funding_ingested: int = 0
    events_ingested: int = 0
    days_recomputed: int = 0
    fills_status: str | None = None
    funding_status: str | None = None
    error_message: str | None = None


@dataclass
class RecomputeRun:
    run_id: int
    wallet_id: int
    status: str
    started_at: str
    completed_at: str | None = None
    days_total: int = 0
    days_processed: int = 0
    months_processed: int = 0
    closed_trades: int = 0
    error_message: str | None = None
