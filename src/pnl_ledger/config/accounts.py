from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    import tomli as tomllib

from pnl_ledger.errors import InvalidWalletError

WALLET_RE = re.compile(r"0x[0-9a-f]{40}")


@dataclass(frozen=True)
class WalletConfig:
    name: str
    address: str
    starting_equity: float | None
    active: bool


@dataclass(frozen=True)
class AccountsConfig:
    default_account: str | None
    wallets: dict[str, WalletConfig]


def normalize_wallet(value: Any) -> str:
    """Return the canonical lowercase address or raise InvalidWalletError."""
    if not isinstance(value, str):
        raise InvalidWalletError(value)
    cleaned = value.strip().lower()
    if not WALLET_RE.fullmatch(cleaned):
        raise InvalidWalletError(value)
    return cleaned


def load_accounts_config(path: Path) -> AccountsConfig:
    if not path.exists():
        return AccountsConfig(default_account=None, wallets={})
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    default_account = raw.get("default_account")
    block = raw.get("accounts", {}) if isinstance(raw, dict) else {}
    wallets: dict[str, WalletConfig] = {}
    for name, cfg in block.items():
        if not isinstance(cfg, Mapping):
            continue
        address = cfg.get("address") or cfg.get("account_id") or cfg.get("wallet")
        starting_equity = (
            cfg.get("starting_equity")
            if "starting_equity" in cfg
            else cfg.get("startingEquity")
        )
        active_raw = cfg.get("active")
        wallets[name] = WalletConfig(
            name=name,
            address=normalize_wallet(address),
            starting_equity=_parse_optional_float(starting_equity),
            active=True if active_raw is None else bool(active_raw),
        )
    if default_account and default_account not in wallets:
        raise ValueError(f"Default account '{default_account}' not found in accounts config.")
    return AccountsConfig(default_account=default_account, wallets=wallets)


def resolve_wallet(
    value: str | None = None,
    env: Mapping[str, str] | None = None,
    config_path: Path | None = None,
) -> WalletConfig:
    """Resolve a wallet address or configured account name into a WalletConfig.

    Unknown addresses are accepted as-is with no starting equity; unknown names
    raise ValueError.
    """
    env = env or os.environ
    config_path = Path(config_path or env.get("PNL_LEDGER_ACCOUNTS_CONFIG", "config/accounts.toml"))
    config = load_accounts_config(config_path)
    requested = value or env.get("PNL_LEDGER_WALLET") or config.default_account
    if requested is None:
        raise ValueError("No wallet given and no default account configured.")
    if requested in config.wallets:
        return config.wallets[requested]
    address = normalize_wallet(requested)
    for wallet in config.wallets.values():
        if wallet.address == address:
            return wallet
    return WalletConfig(name=address, address=address, starting_equity=None, active=True)


def _parse_optional_float(value: object) -> float | None:
    if value is None:
        return None
    if not isinstance(value, (str, int, float)):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        value = stripped
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
