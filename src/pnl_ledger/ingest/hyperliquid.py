from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from pnl_ledger.models import (
    KIND_FILL,
    KIND_FUNDING,
    PERP_FILL,
    PERP_FUNDING,
    EconomicEvent,
    RawEvent,
)

SOURCE_TYPE = "hypercore"
VENUE = "hypercore"
UNKNOWN_MARKET = "UNKNOWN"


@dataclass(frozen=True)
class NormalizeResult:
    raw_events: list[RawEvent] = field(default_factory=list)
    skipped: int = 0


def load_fills_payload(wallet_id: int, address: str, records: Iterable[Mapping[str, Any]]) -> NormalizeResult:
    raw_events: list[RawEvent] = []
    skipped = 0
    for raw in records:
        try:
            raw_events.append(raw_fill_event(wallet_id, address, raw))
        except ValueError:
            skipped += 1
    return NormalizeResult(raw_events=raw_events, skipped=skipped)


def load_funding_payload(wallet_id: int, address: str, records: Iterable[Mapping[str, Any]]) -> NormalizeResult:
    raw_events: list[RawEvent] = []
    skipped = 0
    for raw in records:
        try:
            raw_events.append(raw_funding_event(wallet_id, address, raw))
        except ValueError:
            skipped += 1
    return NormalizeResult(raw_events=raw_events, skipped=skipped)


def raw_fill_event(wallet_id: int, address: str, raw: Mapping[str, Any]) -> RawEvent:
    ts = _parse_timestamp(raw.get("time"))
    coin = _coin(raw.get("coin"))
    return RawEvent(
        wallet_id=wallet_id,
        source_type=SOURCE_TYPE,
        event_kind=KIND_FILL,
        ts=ts,
        unique_key=f"{SOURCE_TYPE}:fill:{coin}:{_fill_dedupe_id(raw)}:{address}",
        payload=dict(raw),
    )


def raw_funding_event(wallet_id: int, address: str, raw: Mapping[str, Any]) -> RawEvent:
    ts = _parse_timestamp(raw.get("time"))
    coin = _funding_coin(raw)
    return RawEvent(
        wallet_id=wallet_id,
        source_type=SOURCE_TYPE,
        event_kind=KIND_FUNDING,
        ts=ts,
        unique_key=f"{SOURCE_TYPE}:funding:{raw.get('time')}:{coin}:{address}",
        payload=dict(raw),
    )


def derive_economic_event(raw_event: RawEvent) -> EconomicEvent:
    if raw_event.event_kind == KIND_FILL:
        event = normalize_fill(raw_event.wallet_id, raw_event.payload)
    elif raw_event.event_kind == KIND_FUNDING:
        event = normalize_funding(raw_event.wallet_id, raw_event.payload)
    else:
        raise ValueError(f"Unsupported raw event kind: {raw_event.event_kind!r}")
    event.raw_event_id = raw_event.raw_event_id
    return event


def normalize_fill(wallet_id: int, raw: Mapping[str, Any]) -> EconomicEvent:
    ts = _parse_timestamp(raw.get("time"))
    coin = _coin(raw.get("coin"))
    direction = raw.get("dir")
    side = "long" if "Long" in str(direction or "") else "short"
    size = _to_float(raw.get("sz"))
    price = _to_float(raw.get("px"))
    tx_hash = raw.get("hash")
    return EconomicEvent(
        wallet_id=wallet_id,
        ts=ts,
        event_type=PERP_FILL,
        venue=VENUE,
        market=coin,
        side=side,
        size=size,
        exec_price=price,
        usd_value=size * price,
        realized_pnl_usd=_to_float(raw.get("closedPnl")),
        fee_usd=_to_float(raw.get("fee")),
        tx_hash=str(tx_hash) if tx_hash not in (None, "") else None,
        meta={
            "dedupe": f"fill:{coin}:{_fill_dedupe_id(raw)}",
            "dir": direction,
            "side": raw.get("side"),
            "tid": raw.get("tid"),
            "oid": raw.get("oid"),
            "crossed": raw.get("crossed"),
            "feeToken": raw.get("feeToken"),
            "startPosition": raw.get("startPosition"),
        },
    )


def normalize_funding(wallet_id: int, raw: Mapping[str, Any]) -> EconomicEvent:
    ts = _parse_timestamp(raw.get("time"))
    delta = raw.get("delta")
    delta_map: Mapping[str, Any] = delta if isinstance(delta, Mapping) else {}
    coin = _funding_coin(raw)
    usdc = delta_map.get("usdc") if delta_map.get("usdc") not in (None, "") else raw.get("usdc")
    rate = delta_map.get("fundingRate", raw.get("fundingRate"))
    szi = delta_map.get("szi", raw.get("szi"))
    return EconomicEvent(
        wallet_id=wallet_id,
        ts=ts,
        event_type=PERP_FUNDING,
        venue=VENUE,
        market=coin,
        funding_usd=_to_float(usdc),
        fee_usd=0.0,
        meta={
            "dedupe": f"funding:{raw.get('time')}:{coin}",
            "funding_rate": rate,
            "position_size": szi,
            "hash": raw.get("hash"),
        },
    )


def _fill_dedupe_id(raw: Mapping[str, Any]) -> str:
    for key in ("tid", "oid", "time"):
        value = raw.get(key)
        if value not in (None, "", 0):
            return str(value)
    return ""


def _coin(value: Any) -> str:
    if value in (None, ""):
        return UNKNOWN_MARKET
    return str(value)


def _funding_coin(raw: Mapping[str, Any]) -> str:
    delta = raw.get("delta")
    if isinstance(delta, Mapping) and delta.get("coin") not in (None, ""):
        return str(delta["coin"])
    return _coin(raw.get("coin"))


def _to_float(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _parse_timestamp(value: Any) -> datetime:
    if value in (None, ""):
        raise ValueError("Missing event timestamp")
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        parsed = datetime.fromisoformat(str(value))
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    if numeric > 1e12:
        return datetime.fromtimestamp(numeric / 1000.0, tz=timezone.utc)
    return datetime.fromtimestamp(numeric, tz=timezone.utc)
