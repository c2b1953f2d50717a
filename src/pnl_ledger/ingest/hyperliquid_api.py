from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from pnl_ledger.config.app_config import ApiSettings
from pnl_ledger.errors import RateLimitError, UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_INFO_URL = "https://api.hyperliquid.xyz/info"
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_RETRY_ATTEMPTS = 5
DEFAULT_RATE_LIMIT_BACKOFF_SECONDS = 2.0
DEFAULT_RATE_LIMIT_BACKOFF_CAP_SECONDS = 10.0
DEFAULT_PAGE_LIMIT = 500
DEFAULT_MAX_PAGES = 50
DEFAULT_MAX_FILLS = 25000
DEFAULT_PAGE_DELAY_SECONDS = 0.5

PageFetcher = Callable[[int], list[Mapping[str, Any]]]


@dataclass(frozen=True)
class HyperliquidInfoConfig:
    info_url: str = DEFAULT_INFO_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    rate_limit_backoff_seconds: float = DEFAULT_RATE_LIMIT_BACKOFF_SECONDS
    rate_limit_backoff_cap_seconds: float = DEFAULT_RATE_LIMIT_BACKOFF_CAP_SECONDS
    page_limit: int = DEFAULT_PAGE_LIMIT
    max_pages: int = DEFAULT_MAX_PAGES
    max_fills: int | None = DEFAULT_MAX_FILLS
    page_delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "HyperliquidInfoConfig":
        max_fills = int(env.get("HYPERLIQUID_MAX_FILLS", str(DEFAULT_MAX_FILLS)) or 0)
        return cls(
            info_url=str(env.get("HYPERLIQUID_INFO_URL", DEFAULT_INFO_URL)).strip() or DEFAULT_INFO_URL,
            timeout_seconds=_to_float(env.get("HYPERLIQUID_TIMEOUT_SECONDS"), DEFAULT_TIMEOUT_SECONDS),
            retry_attempts=int(env.get("HYPERLIQUID_RETRY_ATTEMPTS", str(DEFAULT_RETRY_ATTEMPTS))),
            rate_limit_backoff_seconds=_to_float(
                env.get("HYPERLIQUID_RATE_LIMIT_BACKOFF_SECONDS"), DEFAULT_RATE_LIMIT_BACKOFF_SECONDS
            ),
            rate_limit_backoff_cap_seconds=_to_float(
                env.get("HYPERLIQUID_RATE_LIMIT_BACKOFF_CAP_SECONDS"), DEFAULT_RATE_LIMIT_BACKOFF_CAP_SECONDS
            ),
            page_limit=int(env.get("HYPERLIQUID_PAGE_LIMIT", str(DEFAULT_PAGE_LIMIT))),
            max_pages=int(env.get("HYPERLIQUID_MAX_PAGES", str(DEFAULT_MAX_PAGES))),
            max_fills=max_fills if max_fills > 0 else None,
            page_delay_seconds=_to_float(env.get("HYPERLIQUID_PAGE_DELAY_SECONDS"), DEFAULT_PAGE_DELAY_SECONDS),
        )

    @classmethod
    def from_settings(cls, settings: ApiSettings) -> "HyperliquidInfoConfig":
        return cls(
            info_url=settings.info_url,
            timeout_seconds=settings.timeout_seconds,
            retry_attempts=settings.retry_attempts,
            rate_limit_backoff_seconds=settings.rate_limit_backoff_seconds,
            rate_limit_backoff_cap_seconds=settings.rate_limit_backoff_cap_seconds,
            page_limit=settings.page_limit,
            max_pages=settings.max_pages,
            max_fills=settings.max_fills,
            page_delay_seconds=settings.page_delay_seconds,
        )


class HyperliquidInfoClient:
    def __init__(
        self,
        config: HyperliquidInfoConfig,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._sleep = sleep

    @property
    def page_limit(self) -> int:
        return self._config.page_limit

    def fetch_user_fills_by_time(
        self, *, user: str, start_ms: int, end_ms: int, aggregate_by_time: bool = False
    ) -> list[Mapping[str, Any]]:
        payload = {
            "type": "userFillsByTime",
            "user": user,
            "startTime": int(start_ms),
            "endTime": int(end_ms),
            "aggregateByTime": bool(aggregate_by_time),
        }
        return _extract_records(self._post_info(payload))

    def fetch_user_funding(self, *, user: str, start_ms: int, end_ms: int) -> list[Mapping[str, Any]]:
        payload = {
            "type": "userFunding",
            "user": user,
            "startTime": int(start_ms),
            "endTime": int(end_ms),
        }
        return _extract_records(self._post_info(payload))

    def fetch_fills(self, *, user: str, start_ms: int, end_ms: int) -> list[Mapping[str, Any]]:
        records = fetch_paged(
            lambda cursor: self.fetch_user_fills_by_time(user=user, start_ms=cursor, end_ms=end_ms),
            start_ms=start_ms,
            end_ms=end_ms,
            page_limit=self._config.page_limit,
            max_pages=self._config.max_pages,
            max_records=self._config.max_fills,
            delay_seconds=self._config.page_delay_seconds,
            sleep=self._sleep,
            label="fills",
        )
        logger.info("Fetched %d total fills for %s", len(records), user)
        return records

    def fetch_funding(self, *, user: str, start_ms: int, end_ms: int) -> list[Mapping[str, Any]]:
        records = fetch_paged(
            lambda cursor: self.fetch_user_funding(user=user, start_ms=cursor, end_ms=end_ms),
            start_ms=start_ms,
            end_ms=end_ms,
            page_limit=self._config.page_limit,
            max_pages=self._config.max_pages,
            delay_seconds=self._config.page_delay_seconds,
            sleep=self._sleep,
            label="funding",
        )
        logger.info("Fetched %d total funding rows for %s", len(records), user)
        return records

    def _post_info(self, payload: Mapping[str, Any]) -> Mapping[str, Any] | list[Any]:
        body = json.dumps(payload).encode("utf-8")
        attempts = max(1, self._config.retry_attempts)
        for attempt in range(attempts):
            request = urllib.request.Request(
                self._config.info_url,
                method="POST",
                data=body,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
            try:
                with urllib.request.urlopen(request, timeout=self._config.timeout_seconds) as response:
                    raw = response.read()
            except urllib.error.HTTPError as exc:
                if exc.code == 429:
                    if attempt == attempts - 1:
                        break
                    wait = self.rate_limit_wait(attempt)
                    logger.warning(
                        "Rate limited on %s (attempt %d/%d), waiting %.1fs",
                        payload.get("type"),
                        attempt + 1,
                        attempts,
                        wait,
                    )
                    self._sleep(wait)
                    continue
                raise UpstreamError(f"Hyperliquid API error: {exc.code}", status=exc.code) from exc
            except urllib.error.URLError as exc:
                if isinstance(exc.reason, TimeoutError):
                    raise UpstreamTimeoutError(f"Hyperliquid /info timed out: {payload.get('type')}") from exc
                raise UpstreamError(f"Hyperliquid /info request failed: {exc.reason}") from exc
            except TimeoutError as exc:
                raise UpstreamTimeoutError(f"Hyperliquid /info timed out: {payload.get('type')}") from exc
            if not raw:
                return []
            try:
                return json.loads(raw.decode("utf-8"))
            except json.JSONDecodeError as exc:
                raise UpstreamError("Invalid JSON from Hyperliquid /info") from exc
        raise RateLimitError("Max retries exceeded due to rate limiting", status=429)

    def rate_limit_wait(self, attempt: int) -> float:
        return min(
            (attempt + 1) * self._config.rate_limit_backoff_seconds,
            self._config.rate_limit_backoff_cap_seconds,
        )


def fetch_paged(
    fetch_page: PageFetcher,
    *,
    start_ms: int,
    end_ms: int,
    page_limit: int,
    max_pages: int,
    max_records: int | None = None,
    delay_seconds: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "records",
) -> list[Mapping[str, Any]]:
    """Walk a time-cursored endpoint over [start_ms, end_ms).

    Each page starts at the cursor; a short page is the last one, otherwise
    the cursor moves to one millisecond past the last record's time.
    """
    records: list[Mapping[str, Any]] = []
    cursor = int(start_ms)
    for page in range(max_pages):
        logger.debug("Fetching %s page %d from %d", label, page + 1, cursor)
        batch = fetch_page(cursor)
        if not batch:
            break
        records.extend(batch)
        if len(batch) < page_limit:
            break
        if max_records is not None and len(records) >= max_records:
            logger.warning("%s fetch hit record cap (%d); stopping early", label, max_records)
            break
        last_time = _record_time_ms(batch[-1])
        if last_time is None:
            logger.warning("%s paging stalled (missing time field); stopping early", label)
            break
        next_cursor = last_time + 1
        if next_cursor <= cursor:
            logger.warning("%s paging cursor did not advance; stopping early", label)
            break
        cursor = next_cursor
        if cursor >= end_ms:
            break
        if page == max_pages - 1:
            logger.warning("%s fetch hit max-pages limit (%d); data may be truncated", label, max_pages)
            break
        if delay_seconds > 0:
            sleep(delay_seconds)
    return records


def _extract_records(response: Any) -> list[Mapping[str, Any]]:
    if isinstance(response, list):
        return [row for row in response if isinstance(row, Mapping)]
    if isinstance(response, Mapping):
        data = response.get("data")
        if isinstance(data, list):
            return [row for row in data if isinstance(row, Mapping)]
    return []


def _record_time_ms(record: Mapping[str, Any]) -> int | None:
    value = record.get("time")
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _to_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
