"""
Sweep orchestrator - polls burner wallets, decides, and sweeps.

Each cycle runs IDLE -> SCANNING -> DECIDING -> SWEEPING -> IDLE:
1. Pull the wallets checked longest ago from the store
2. Read each token balance and mark the wallet checked
3. Keep wallets at or above the sweep threshold
4. Sweep them one at a time and record confirmed sweeps
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

import structlog
from web3 import Web3

from .chain import BalanceReader, ChainReader, format_token_amount
from .config import Settings
from .db import MonitoredWallet, StoreStats, SweepRecord, WalletDatabase
from .errors import (
    ChainReadError,
    CycleError,
    InvalidWalletError,
    StorageError,
    WalletNotFoundError,
)
from .relayer import (
    SweepCandidate,
    SweepOutcome,
    SweepRelayer,
    SweepSubmitter,
    process_sweeps,
    salt_to_bytes32,
)

logger = structlog.get_logger()


class CyclePhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DECIDING = "deciding"
    SWEEPING = "sweeping"


@dataclass
class ServiceState:
    """Current service state."""

    phase: CyclePhase = CyclePhase.IDLE
    cycles_completed: int = 0
    cycles_failed: int = 0
    sweeps_succeeded: int = 0
    sweeps_failed: int = 0
    last_block: Optional[int] = None
    last_cycle_time: Optional[datetime] = None


@dataclass
class ScannedWallet:
    wallet: MonitoredWallet
    balance: int


@dataclass
class CycleReport:
    """What one poll cycle saw and did."""

    cycle_id: str
    block_number: int
    scanned: list[ScannedWallet] = field(default_factory=list)
    candidates: list[SweepCandidate] = field(default_factory=list)
    outcomes: list[SweepOutcome] = field(default_factory=list)


def qualifies(balance: int, min_balance: int) -> bool:
    """A wallet is swept once its balance reaches the threshold."""
    return balance >= min_balance


def normalize_address(address: str, field_name: str = "address") -> str:
    """Checksum an EVM address, rejecting anything else."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidWalletError(f"Invalid {field_name}: {address!r}")
    return Web3.to_checksum_address(address)


class AutoSweepService:
    """
    Auto-sweep service: the polling loop plus the registration interface
    used by the front-end.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[WalletDatabase] = None,
        reader: Optional[BalanceReader] = None,
        relayer: Optional[SweepSubmitter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.state = ServiceState()
        self._sleep = sleep

        self.store = store or WalletDatabase(settings.database_url)
        self._reader = reader

        if relayer is not None:
            self.relayer: Optional[SweepSubmitter] = relayer
        elif settings.relayer_configured:
            self.relayer = self._build_relayer()
        else:
            self.relayer = None
            logger.warning("relayer_not_configured", message="dry run mode, sweeps are not submitted")

    def _build_relayer(self) -> Optional[SweepRelayer]:
        """Relayer from settings, or None (dry run) if they are malformed."""
        settings = self.settings
        try:
            relayer = SweepRelayer(
                rpc_url=settings.rpc_url,
                private_key=settings.relayer_private_key,
                deployer_address=settings.deployer_address,
                token_address=settings.token_address,
                chain_id=settings.chain_id,
                reader=self._reader if isinstance(self._reader, ChainReader) else None,
                receipt_timeout=settings.receipt_timeout_seconds,
                min_balance_wei=settings.min_relayer_balance_wei,
                timeout=settings.rpc_timeout_seconds,
            )
        except ValueError as e:
            logger.warning(
                "config_invalid",
                setting="relayer",
                error=str(e),
                message="dry run mode, sweeps are not submitted",
            )
            return None

        if self._reader is None:
            self._reader = relayer.reader
        return relayer

    @property
    def reader(self) -> BalanceReader:
        """
        Chain reader, built on first use.

        Registration calls never touch the chain, so a malformed token
        address only fails the operations that read it.
        """
        if self._reader is None:
            settings = self.settings
            try:
                self._reader = ChainReader(
                    settings.rpc_url,
                    settings.token_address,
                    timeout=settings.rpc_timeout_seconds,
                )
            except ValueError as e:
                raise ChainReadError(f"invalid chain settings: {e}") from e
        return self._reader

    @reader.setter
    def reader(self, value: BalanceReader) -> None:
        self._reader = value

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Preflight checks before the polling loop."""
        settings = self.settings
        settings.warn_missing()

        logger.info(
            "service_starting",
            chain_id=settings.chain_id,
            rpc_url=settings.rpc_url,
            deployer=settings.deployer_address,
            token=settings.token_address,
            relayer=getattr(self.relayer, "address", None),
            poll_interval_ms=settings.poll_interval_ms,
            min_balance_to_sweep=str(format_token_amount(settings.min_balance_to_sweep)),
        )

        check_balance = getattr(self.relayer, "check_relayer_balance", None)
        if check_balance is not None:
            check_balance()

        stats = self.store.stats()
        logger.info(
            "database_stats",
            total_wallets=stats.total_wallets,
            total_sweeps=stats.total_sweeps,
        )

    def run(
        self,
        stop_event: threading.Event,
        before_close: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Run cycles until `stop_event` is set, then close the store.

        A cycle in flight always finishes; the event is only honoured
        between cycles. `before_close` runs after the loop exits and
        before the store is closed (used to stop the API thread).
        """
        try:
            self.start()
            logger.info("service_running", poll_interval_ms=self.settings.poll_interval_ms)

            while not stop_event.is_set():
                try:
                    self.run_cycle()
                    wait = self.settings.poll_interval_seconds
                except Exception as e:
                    self.state.cycles_failed += 1
                    self.state.phase = CyclePhase.IDLE
                    wait = self.settings.error_backoff_seconds
                    logger.error("cycle_failed", error=str(e), backoff_seconds=wait)

                stop_event.wait(wait)
        finally:
            logger.info("service_stopping")
            try:
                if before_close is not None:
                    before_close()
            finally:
                self.store.close()

    def run_once(self) -> CycleReport:
        """Run a single cycle."""
        return self.run_cycle()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self, cycle_id: Optional[str] = None) -> CycleReport:
        """
        Run one scan/decide/sweep cycle.

        Raises:
            CycleError: the chain or the store was unreachable for the cycle
        """
        cycle_id = cycle_id or uuid.uuid4().hex[:12]
        log = logger.bind(cycle_id=cycle_id)

        try:
            block_number = self.reader.get_block_number()
        except ChainReadError as e:
            raise CycleError(f"cannot read block height: {e}") from e

        log.info("cycle_started", block=block_number)
        report = CycleReport(cycle_id=cycle_id, block_number=block_number)

        try:
            self.state.phase = CyclePhase.SCANNING
            report.scanned = self.scan(log)

            self.state.phase = CyclePhase.DECIDING
            report.candidates = self.decide(report.scanned, log)

            self.state.phase = CyclePhase.SWEEPING
            report.outcomes = self.sweep(report.candidates, log)
        finally:
            self.state.phase = CyclePhase.IDLE

        self.state.cycles_completed += 1
        self.state.last_block = block_number
        self.state.last_cycle_time = datetime.now()
        for outcome in report.outcomes:
            if outcome.success:
                self.state.sweeps_succeeded += 1
            else:
                self.state.sweeps_failed += 1

        log.info(
            "cycle_complete",
            block=block_number,
            scanned=len(report.scanned),
            qualified=len(report.candidates),
            swept=sum(1 for o in report.outcomes if o.success),
            failed=sum(1 for o in report.outcomes if not o.success),
        )
        return report

    def scan(self, log=None) -> list[ScannedWallet]:
        """Read balances of the wallets due for a check."""
        log = log or logger
        try:
            wallets = self.store.due_for_check(self.settings.scan_batch_size)
        except StorageError as e:
            raise CycleError(f"cannot load wallets: {e}") from e

        log.info("scan_started", wallets=len(wallets))
        scanned: list[ScannedWallet] = []

        for index, wallet in enumerate(wallets):
            if index > 0 and self.settings.scan_delay_seconds > 0:
                self._sleep(self.settings.scan_delay_seconds)
            try:
                balance = self.reader.get_token_balance(wallet.address)
                self.store.mark_checked(wallet.address)
            except Exception as e:
                log.error("wallet_scan_failed", wallet=wallet.address, error=str(e))
                continue

            log.debug("wallet_checked", wallet=wallet.address, balance=str(balance))
            scanned.append(ScannedWallet(wallet=wallet, balance=balance))

        return scanned

    def decide(self, scanned: list[ScannedWallet], log=None) -> list[SweepCandidate]:
        """Keep wallets whose balance meets the sweep threshold."""
        log = log or logger
        min_balance = self.settings.min_balance_to_sweep
        candidates = []

        for item in scanned:
            if not qualifies(item.balance, min_balance):
                continue
            log.info(
                "wallet_qualified",
                wallet=item.wallet.address,
                balance=str(format_token_amount(item.balance)),
            )
            candidates.append(
                SweepCandidate(
                    address=item.wallet.address,
                    owner=item.wallet.owner,
                    salt=item.wallet.salt,
                    balance=item.balance,
                )
            )

        if not candidates:
            log.info("no_wallets_to_sweep")
        return candidates

    def sweep(self, candidates: list[SweepCandidate], log=None) -> list[SweepOutcome]:
        """Hand qualifying wallets to the relayer, one at a time."""
        log = log or logger
        if not candidates:
            return []

        if self.relayer is None:
            for candidate in candidates:
                log.warning("dry_run_sweep_skipped", wallet=candidate.address, amount=str(candidate.balance))
            return []

        log.info("sweep_batch_started", wallets=len(candidates))
        outcomes = process_sweeps(
            self.relayer,
            self.store,
            candidates,
            pause_seconds=self.settings.sweep_pause_seconds,
            sleep=self._sleep,
            log=log,
        )
        log.info("sweep_batch_complete", succeeded=sum(1 for o in outcomes if o.success))
        return outcomes

    # ------------------------------------------------------------------
    # Registration interface
    # ------------------------------------------------------------------

    def add_wallet(self, address: str, owner: str, salt: str) -> MonitoredWallet:
        """Register a burner wallet for monitoring (idempotent)."""
        address = normalize_address(address)
        owner = normalize_address(owner, "owner")
        try:
            salt_to_bytes32(salt)
        except ValueError as e:
            raise InvalidWalletError(str(e)) from e

        created = self.store.register_wallet(address, owner, salt)
        logger.info("wallet_added", wallet=address, owner=owner, created=created)

        wallet = self.store.get_wallet(address)
        if wallet is None:
            raise StorageError(f"wallet {address} missing after registration")
        return wallet

    def remove_wallet(self, address: str) -> None:
        """Stop monitoring a wallet."""
        address = normalize_address(address)
        if not self.store.unregister(address):
            raise WalletNotFoundError(address)
        logger.info("wallet_removed", wallet=address)

    def get_wallet_history(self, address: str) -> list[SweepRecord]:
        return self.store.history(normalize_address(address))

    def get_owner_wallets(self, owner: str) -> list[MonitoredWallet]:
        return self.store.wallets_of(normalize_address(owner, "owner"))

    def get_stats(self) -> StoreStats:
        return self.store.stats()

    def close(self) -> None:
        self.store.close()
