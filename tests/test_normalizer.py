from __future__ import annotations

from datetime import datetime, timezone

import pytest

from pnl_ledger.ingest.hyperliquid import (
    derive_economic_event,
    load_fills_payload,
    load_funding_payload,
    normalize_fill,
    normalize_funding,
    raw_fill_event,
    raw_funding_event,
)
from pnl_ledger.models import KIND_FILL, PERP_FILL, PERP_FUNDING

from conftest import WALLET, ms


def test_normalize_fill_maps_fields(fill_record):
    raw = fill_record("ETH", "A", 2.0, 3200, ms(2024, 3, 15), closed_pnl=-80, fee=6.4, direction="Close Long", tid=77)
    event = normalize_fill(1, raw)

    assert event.event_type == PERP_FILL
    assert event.market == "ETH"
    assert event.side == "long"
    assert event.size == 2.0
    assert event.exec_price == 3200.0
    assert event.usd_value == pytest.approx(6400.0)
    assert event.realized_pnl_usd == pytest.approx(-80.0)
    assert event.fee_usd == pytest.approx(6.4)
    assert event.ts == datetime(2024, 3, 15, 12, tzinfo=timezone.utc)
    assert event.meta["dedupe"] == "fill:ETH:77"
    assert event.meta["dir"] == "Close Long"
    assert event.meta["feeToken"] == "USDC"


def test_normalize_fill_tolerates_missing_optionals():
    event = normalize_fill(1, {"coin": "BTC", "time": ms(2024, 1, 2), "dir": "Open Short"})
    assert event.side == "short"
    assert event.size == 0.0
    assert event.realized_pnl_usd == 0.0
    assert event.fee_usd == 0.0
    assert event.tx_hash is None


def test_normalize_funding_prefers_delta(funding_record):
    event = normalize_funding(1, funding_record("SOL", -1.25, ms(2024, 5, 1), szi=-3.0))
    assert event.event_type == PERP_FUNDING
    assert event.market == "SOL"
    assert event.funding_usd == pytest.approx(-1.25)
    assert event.fee_usd == 0.0
    assert event.meta["position_size"] == "-3.0"
    assert event.meta["dedupe"] == f"funding:{ms(2024, 5, 1)}:SOL"


def test_normalize_funding_coin_fallbacks():
    assert normalize_funding(1, {"time": 1_700_000_000_000, "coin": "DOGE", "usdc": "0.5"}).market == "DOGE"
    assert normalize_funding(1, {"time": 1_700_000_000_000, "delta": {"usdc": "0.5"}}).market == "UNKNOWN"


def test_unique_keys_are_deterministic(fill_record, funding_record):
    fill = fill_record("BTC", "B", 1, 100, 1_710_000_000_000, tid=42)
    assert raw_fill_event(1, WALLET, fill).unique_key == f"hypercore:fill:BTC:42:{WALLET}"
    assert raw_fill_event(1, WALLET, fill).unique_key == raw_fill_event(1, WALLET, dict(fill)).unique_key

    funding = funding_record("BTC", 1.0, 1_710_000_000_000)
    assert raw_funding_event(1, WALLET, funding).unique_key == f"hypercore:funding:1710000000000:BTC:{WALLET}"


def test_fill_key_falls_back_to_oid_then_time():
    raw = {"coin": "BTC", "time": 1_710_000_000_000, "oid": 9}
    assert raw_fill_event(1, WALLET, raw).unique_key == f"hypercore:fill:BTC:9:{WALLET}"
    raw = {"coin": "BTC", "time": 1_710_000_000_000}
    assert raw_fill_event(1, WALLET, raw).unique_key == f"hypercore:fill:BTC:1710000000000:{WALLET}"


def test_payload_loaders_skip_records_without_time(fill_record, funding_record):
    good = fill_record("BTC", "B", 1, 100, ms(2024, 1, 1))
    result = load_fills_payload(1, WALLET, [good, {"coin": "BTC", "sz": "1"}])
    assert len(result.raw_events) == 1
    assert result.skipped == 1
    assert result.raw_events[0].event_kind == KIND_FILL

    funding = load_funding_payload(1, WALLET, [funding_record("ETH", 1.0, ms(2024, 1, 1)), {"delta": {}}])
    assert len(funding.raw_events) == 1
    assert funding.skipped == 1


def test_derive_economic_event_links_raw_event(fill_record):
    raw_event = raw_fill_event(1, WALLET, fill_record("BTC", "B", 1, 100, ms(2024, 1, 1)))
    raw_event.raw_event_id = 5
    event = derive_economic_event(raw_event)
    assert event.raw_event_id == 5
    assert event.market == "BTC"


def test_timestamps_accept_seconds_and_iso():
    assert normalize_fill(1, {"coin": "X", "time": 1_704_067_200}).ts == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert normalize_fill(1, {"coin": "X", "time": "2024-01-01T00:00:00"}).ts == datetime(
        2024, 1, 1, tzinfo=timezone.utc
    )
