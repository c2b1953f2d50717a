from __future__ import annotations


class LedgerError(Exception):
    """Base class for errors raised by the ledger."""


class InvalidWalletError(LedgerError, ValueError):
    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid wallet address format: {value!r}")
        self.value = value


class WalletNotFoundError(LedgerError):
    def __init__(self, address: str) -> None:
        super().__init__(f"Wallet not found. Sync wallet first: {address}")
        self.address = address


class RunInProgressError(LedgerError):
    def __init__(self, kind: str, run_id: int, wallet_id: int) -> None:
        super().__init__(f"A {kind} run ({run_id}) is already running for wallet {wallet_id}")
        self.kind = kind
        self.run_id = run_id
        self.wallet_id = wallet_id


class UpstreamError(LedgerError, RuntimeError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RateLimitError(UpstreamError):
    pass


class UpstreamTimeoutError(UpstreamError):
    pass
