"""
Error taxonomy for the auto-sweep service.
"""


class AutoSweepError(Exception):
    """Base class for all service errors."""


class StorageError(AutoSweepError):
    """I/O failure in the wallet/sweep store."""


class ChainReadError(AutoSweepError):
    """A single read from the chain endpoint failed."""


class SweepExecutionError(AutoSweepError):
    """Gas estimation, submission, or on-chain execution of a sweep failed."""

    def __init__(self, wallet: str, message: str, tx_hash: str | None = None):
        self.wallet = wallet
        self.message = message
        self.tx_hash = tx_hash
        super().__init__(f"Sweep failed for {wallet}: {message}")


class CycleError(AutoSweepError):
    """The scan/decide phase of a poll cycle could not complete."""


class WalletNotFoundError(AutoSweepError):
    """The wallet is not registered for monitoring."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Wallet {address} is not registered for monitoring")


class InvalidWalletError(AutoSweepError, ValueError):
    """Registration input failed validation."""
