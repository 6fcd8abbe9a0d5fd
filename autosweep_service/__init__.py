"""
Auto-Sweep Service

Watches deterministic burner wallets for stablecoin deposits and sweeps
them to their owners through a relayer that pays gas.

Usage:
    # Register a wallet
    autosweep-service add-wallet 0xBurner... 0xOwner... 0x01

    # Run the service (with the registration API)
    autosweep-service run --api

    # Run once (for testing)
    autosweep-service run --once
"""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .errors import (
    AutoSweepError,
    ChainReadError,
    CycleError,
    InvalidWalletError,
    StorageError,
    SweepExecutionError,
    WalletNotFoundError,
)
from .db import MonitoredWallet, StoreStats, SweepRecord, WalletDatabase
from .chain import ChainReader
from .relayer import SweepRelayer
from .service import AutoSweepService, CyclePhase

__all__ = [
    "__version__",
    "Settings",
    "load_settings",
    "AutoSweepError",
    "ChainReadError",
    "CycleError",
    "InvalidWalletError",
    "StorageError",
    "SweepExecutionError",
    "WalletNotFoundError",
    "MonitoredWallet",
    "StoreStats",
    "SweepRecord",
    "WalletDatabase",
    "ChainReader",
    "SweepRelayer",
    "AutoSweepService",
    "CyclePhase",
]
