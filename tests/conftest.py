from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from pnl_ledger.storage.sqlite_store import connect, get_or_create_wallet, init_db

WALLET = "0x" + "ab" * 20


def ms(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> int:
    return int(datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp() * 1000)


class FakeInfoClient:
    """Stands in for HyperliquidInfoClient; raises when given an exception."""

    def __init__(self, fills: Any = None, funding: Any = None) -> None:
        self.fills = fills if fills is not None else []
        self.funding = funding if funding is not None else []
        self.calls: list[tuple[str, str, int, int]] = []

    def fetch_fills(self, *, user: str, start_ms: int, end_ms: int) -> list[dict[str, Any]]:
        self.calls.append(("fills", user, start_ms, end_ms))
        if isinstance(self.fills, Exception):
            raise self.fills
        return list(self.fills)

    def fetch_funding(self, *, user: str, start_ms: int, end_ms: int) -> list[dict[str, Any]]:
        self.calls.append(("funding", user, start_ms, end_ms))
        if isinstance(self.funding, Exception):
            raise self.funding
        return list(self.funding)


@pytest.fixture
def conn():
    connection = connect(":memory:")
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture
def wallet(conn):
    return get_or_create_wallet(conn, WALLET)


@pytest.fixture
def fill_record() -> Callable[..., dict[str, Any]]:
    counter = {"tid": 1000}

    def build(
        coin: str,
        side: str,
        sz: float,
        px: float,
        time_ms: int,
        *,
        closed_pnl: float = 0.0,
        fee: float = 0.0,
        direction: str | None = None,
        tid: int | None = None,
    ) -> dict[str, Any]:
        counter["tid"] += 1
        if direction is None:
            direction = "Open Long" if side == "B" else "Open Short"
        return {
            "coin": coin,
            "px": str(px),
            "sz": str(sz),
            "side": side,
            "time": time_ms,
            "startPosition": "0.0",
            "dir": direction,
            "closedPnl": str(closed_pnl),
            "hash": f"0x{counter['tid']:064x}",
            "oid": counter["tid"] * 10,
            "crossed": True,
            "fee": str(fee),
            "tid": tid if tid is not None else counter["tid"],
            "feeToken": "USDC",
        }

    return build


@pytest.fixture
def funding_record() -> Callable[..., dict[str, Any]]:
    def build(coin: str, usdc: float, time_ms: int, *, szi: float = 1.0, rate: float = 0.0001) -> dict[str, Any]:
        return {
            "time": time_ms,
            "hash": "0x" + "0" * 64,
            "delta": {
                "type": "funding",
                "coin": coin,
                "usdc": str(usdc),
                "szi": str(szi),
                "fundingRate": str(rate),
            },
        }

    return build
