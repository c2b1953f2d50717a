from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Iterable

from pnl_ledger.ingest.hyperliquid import derive_economic_event
from pnl_ledger.models import EconomicEvent, RawEvent
from pnl_ledger.storage.sqlite_reader import load_raw_events
from pnl_ledger.storage.sqlite_store import insert_raw_events, replace_economic_events

logger = logging.getLogger(__name__)


def record_raw_events(conn: sqlite3.Connection, events: Iterable[RawEvent]) -> tuple[int, set[date]]:
    """Store raw events and return (inserted count, days touched by the batch).

    The touched days include those whose events were already stored; their
    canonical events are re-derived anyway, which is a no-op for the ledger.
    """
    batch = list(events)
    inserted = insert_raw_events(conn, batch)
    return inserted, {event.day for event in batch}


def rederive_days(conn: sqlite3.Connection, wallet_id: int, days: Iterable[date] | None = None) -> int:
    """Rebuild the canonical events of ``days`` (every day when None) from raw events."""
    day_set = None if days is None else set(days)
    if day_set is not None and not day_set:
        return 0
    derived: list[EconomicEvent] = []
    for raw_event in load_raw_events(conn, wallet_id, day_set):
        try:
            derived.append(derive_economic_event(raw_event))
        except ValueError as exc:
            logger.warning("Skipping raw event %s: %s", raw_event.unique_key, exc)
    count = replace_economic_events(conn, wallet_id, day_set, derived)
    logger.info("Re-derived %d events for wallet %d", count, wallet_id)
    return count
