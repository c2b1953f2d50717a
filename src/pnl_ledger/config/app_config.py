from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    import tomli as tomllib

DEFAULT_HISTORY_START = "2024-01-01T00:00:00+00:00"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class AppSettings:
    db_path: Path
    host: str
    port: int
    reload: bool
    env_path: Path


@dataclass(frozen=True)
class ApiSettings:
    info_url: str
    timeout_seconds: float
    retry_attempts: int
    rate_limit_backoff_seconds: float
    rate_limit_backoff_cap_seconds: float
    page_limit: int
    max_pages: int
    max_fills: int | None
    page_delay_seconds: float


@dataclass(frozen=True)
class SyncSettings:
    history_start_ms: int
    fetch_concurrently: bool
    read_page_size: int
    stale_run_minutes: int


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    format: str


@dataclass(frozen=True)
class AppConfig:
    app: AppSettings
    api: ApiSettings
    sync: SyncSettings
    logging: LoggingSettings


def load_dotenv(path: Path) -> dict[str, str]:
    env: dict[str, str] = {}
    if not path.exists():
        return env

    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        env[key.strip()] = value.strip().strip("\"").strip("'")
    return env


def apply_api_settings(env: Mapping[str, str], app_config: AppConfig) -> dict[str, str]:
    # Explicit environment variables win over app.toml.
    api = app_config.api
    merged = {
        "HYPERLIQUID_INFO_URL": api.info_url,
        "HYPERLIQUID_TIMEOUT_SECONDS": str(api.timeout_seconds),
        "HYPERLIQUID_RETRY_ATTEMPTS": str(api.retry_attempts),
        "HYPERLIQUID_RATE_LIMIT_BACKOFF_SECONDS": str(api.rate_limit_backoff_seconds),
        "HYPERLIQUID_RATE_LIMIT_BACKOFF_CAP_SECONDS": str(api.rate_limit_backoff_cap_seconds),
        "HYPERLIQUID_PAGE_LIMIT": str(api.page_limit),
        "HYPERLIQUID_MAX_PAGES": str(api.max_pages),
        "HYPERLIQUID_MAX_FILLS": str(api.max_fills or 0),
        "HYPERLIQUID_PAGE_DELAY_SECONDS": str(api.page_delay_seconds),
    }
    merged.update(env)
    return merged


def load_app_config(path: Path | None = None) -> AppConfig:
    config_path = path or Path("config/app.toml")
    raw: Mapping[str, Any] = {}
    if config_path.exists():
        raw = tomllib.loads(config_path.read_text(encoding="utf-8"))

    app_raw = _section(raw, "app")
    api_raw = _section(raw, "api")
    sync_raw = _section(raw, "sync")
    logging_raw = _section(raw, "logging")

    app = AppSettings(
        db_path=Path(app_raw.get("db_path", "data/pnl_ledger.sqlite")),
        host=str(app_raw.get("host", "127.0.0.1")),
        port=int(app_raw.get("port", 8000)),
        reload=bool(app_raw.get("reload", False)),
        env_path=Path(app_raw.get("env_path", ".env")),
    )

    api = ApiSettings(
        info_url=str(api_raw.get("info_url", "https://api.hyperliquid.xyz/info")),
        timeout_seconds=float(api_raw.get("timeout_seconds", 15.0)),
        retry_attempts=int(api_raw.get("retry_attempts", 5)),
        rate_limit_backoff_seconds=float(api_raw.get("rate_limit_backoff_seconds", 2.0)),
        rate_limit_backoff_cap_seconds=float(api_raw.get("rate_limit_backoff_cap_seconds", 10.0)),
        page_limit=int(api_raw.get("page_limit", 500)),
        max_pages=int(api_raw.get("max_pages", 50)),
        max_fills=_int_or_none(api_raw.get("max_fills", 25_000)),
        page_delay_seconds=float(api_raw.get("page_delay_seconds", 0.5)),
    )

    sync = SyncSettings(
        history_start_ms=_history_start_ms(sync_raw.get("history_start")),
        fetch_concurrently=bool(sync_raw.get("fetch_concurrently", True)),
        read_page_size=int(sync_raw.get("read_page_size", 1000)),
        stale_run_minutes=int(sync_raw.get("stale_run_minutes", 30)),
    )

    log_settings = LoggingSettings(
        level=str(logging_raw.get("level", "INFO")).strip().upper() or "INFO",
        format=str(logging_raw.get("format", LOG_FORMAT)),
    )

    return AppConfig(app=app, api=api, sync=sync, logging=log_settings)


def configure_logging(settings: LoggingSettings) -> None:
    level = logging.getLevelName(settings.level)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=settings.format)


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if isinstance(value, Mapping):
        return value
    return {}


def _int_or_none(value: Any) -> int | None:
    if value in (None, "", 0):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _history_start_ms(value: Any) -> int:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    else:
        parsed = datetime.fromisoformat(str(value or DEFAULT_HISTORY_START))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)
