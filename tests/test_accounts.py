from __future__ import annotations

import pytest

from pnl_ledger.config.accounts import load_accounts_config, normalize_wallet, resolve_wallet
from pnl_ledger.errors import InvalidWalletError

from conftest import WALLET


@pytest.mark.parametrize(
    "value",
    [
        WALLET,
        "0X" + "ab" * 20,
        "0x" + "AB" * 20,
        "0X" + "aB" * 20,
        "  0x" + "Ab" * 20 + "\n",
    ],
)
def test_normalize_wallet_lowercases_any_casing(value):
    assert normalize_wallet(value) == WALLET


@pytest.mark.parametrize(
    "value",
    [None, "", "ab" * 20, "0x" + "ab" * 19, "0x" + "ab" * 21, "0x" + "zz" * 20, "1x" + "ab" * 20, 42],
)
def test_normalize_wallet_rejects_bad_values(value):
    with pytest.raises(InvalidWalletError):
        normalize_wallet(value)


def test_accounts_config_normalizes_addresses(tmp_path):
    path = tmp_path / "accounts.toml"
    path.write_text(
        'default_account = "main"\n'
        "[accounts.main]\n"
        f'address = "0X{"AB" * 20}"\n'
        "starting_equity = 2500\n",
        encoding="utf-8",
    )

    config = load_accounts_config(path)

    assert config.wallets["main"].address == WALLET
    assert config.wallets["main"].starting_equity == 2500.0
    env = {"PNL_LEDGER_ACCOUNTS_CONFIG": str(path)}
    assert resolve_wallet(None, env=env).address == WALLET
    assert resolve_wallet("0X" + "Ab" * 20, env=env).name == "main"


def test_resolve_wallet_rejects_unknown_names(tmp_path):
    with pytest.raises(ValueError):
        resolve_wallet("nobody", env={"PNL_LEDGER_ACCOUNTS_CONFIG": str(tmp_path / "missing.toml")})
