from __future__ import annotations

from typing import Iterator

import pytest
from web3 import Web3

from autosweep_service.config import Settings
from autosweep_service.db import WalletDatabase
from autosweep_service.errors import ChainReadError, SweepExecutionError
from autosweep_service.service import AutoSweepService

WALLET_A = Web3.to_checksum_address("0x" + "aa" * 20)
WALLET_C = Web3.to_checksum_address("0x" + "cc" * 20)
WALLET_D = Web3.to_checksum_address("0x" + "dd" * 20)
OWNER_B = Web3.to_checksum_address("0x" + "bb" * 20)
OWNER_E = Web3.to_checksum_address("0x" + "ee" * 20)


class FakeReader:
    """Chain reader with canned balances."""

    def __init__(
        self,
        balances: dict[str, int] | None = None,
        block_number: int = 1_000,
        fail_block: bool = False,
        fail_for: tuple[str, ...] = (),
    ):
        self.balances = balances or {}
        self.block_number = block_number
        self.fail_block = fail_block
        self.fail_for = fail_for
        self.balance_calls: list[str] = []

    def get_block_number(self) -> int:
        if self.fail_block:
            raise ChainReadError("connection refused")
        return self.block_number

    def get_token_balance(self, address: str) -> int:
        self.balance_calls.append(address)
        if address in self.fail_for:
            raise RuntimeError("unexpected reader failure")
        return self.balances.get(address, 0)


class FakeRelayer:
    """Sweep submitter that records calls instead of signing."""

    address = Web3.to_checksum_address("0x" + "12" * 20)

    def __init__(
        self,
        tx_hashes: dict[str, str] | None = None,
        fail_for: tuple[str, ...] = (),
    ):
        self.tx_hashes = tx_hashes or {}
        self.fail_for = fail_for
        self.calls: list[tuple[str, str, str]] = []

    def sweep(self, wallet_address: str, salt: str, recipient: str) -> str:
        self.calls.append((wallet_address, salt, recipient))
        if wallet_address in self.fail_for:
            raise SweepExecutionError(wallet_address, "transaction reverted", tx_hash="0xdead")
        return self.tx_hashes.get(wallet_address, "0xCAFE")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'auto_sweep.db'}",
        min_balance_to_sweep=1_000_000,
        poll_interval_ms=1000,
        scan_delay_ms=0,
        sweep_pause_ms=0,
    )


@pytest.fixture
def store(settings: Settings) -> Iterator[WalletDatabase]:
    db = WalletDatabase(settings.database_url)
    yield db
    db.close()


@pytest.fixture
def reader() -> FakeReader:
    return FakeReader()


@pytest.fixture
def relayer() -> FakeRelayer:
    return FakeRelayer()


@pytest.fixture
def service(
    settings: Settings, store: WalletDatabase, reader: FakeReader, relayer: FakeRelayer
) -> AutoSweepService:
    return AutoSweepService(settings, store=store, reader=reader, relayer=relayer)
