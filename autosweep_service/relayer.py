"""
Sweep submission: deploy-and-sweep transactions signed by the relayer key.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import structlog
from eth_account import Account
from web3 import Web3
from web3.types import TxReceipt

from .chain import ChainReader
from .db import WalletDatabase
from .errors import StorageError, SweepExecutionError

logger = structlog.get_logger()


# Deployer ABI (minimal for deployAndSweepERC20)
DEPLOYER_ABI = [
    {
        "inputs": [
            {"name": "salt", "type": "bytes32"},
            {"name": "token", "type": "address"},
            {"name": "recipient", "type": "address"},
        ],
        "name": "deployAndSweepERC20",
        "outputs": [{"name": "wallet", "type": "address"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

GAS_LIMIT_MARGIN_PERCENT = 120


def salt_to_bytes32(salt: str) -> bytes:
    """
    Convert a hex salt to bytes32, left-padded with zeros.

    "0x01" becomes 31 zero bytes followed by 0x01, which is how the
    deployer derives the burner address.

    Raises:
        ValueError: if the salt is not even-length hex or exceeds 32 bytes
    """
    raw = salt[2:] if salt[:2].lower() == "0x" else salt
    if len(raw) % 2:
        raise ValueError(f"Salt must be an even-length hex string: {salt!r}")
    try:
        value = bytes.fromhex(raw)
    except ValueError as e:
        raise ValueError(f"Salt is not valid hex: {salt!r}") from e
    if len(value) > 32:
        raise ValueError(f"Salt exceeds 32 bytes: {salt!r}")
    return value.rjust(32, b"\x00")


def apply_gas_margin(estimate: int) -> int:
    """Gas limit to submit for an estimate (120%, integer arithmetic)."""
    return estimate * GAS_LIMIT_MARGIN_PERCENT // 100


@dataclass
class SweepCandidate:
    """A wallet whose balance qualified for a sweep."""

    address: str
    owner: str
    salt: str
    balance: int  # minor units


@dataclass
class SweepOutcome:
    """Result of one sweep attempt."""

    wallet: str
    success: bool
    tx_hash: Optional[str] = None
    amount: int = 0
    recorded: bool = False
    error: Optional[str] = None


class SweepSubmitter(Protocol):
    """Write port: submit one sweep and wait for it."""

    def sweep(self, wallet_address: str, salt: str, recipient: str) -> str: ...


class SweepRelayer:
    """Signs and submits sweeps from the relayer account."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        deployer_address: str,
        token_address: str,
        chain_id: int,
        reader: Optional[ChainReader] = None,
        receipt_timeout: float = 120.0,
        min_balance_wei: int = 10**16,
        timeout: float = 30.0,
        w3: Optional[Web3] = None,
    ):
        self.w3 = w3 or Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
        )
        self.account = Account.from_key(private_key)
        self.chain_id = chain_id
        self.token_address = Web3.to_checksum_address(token_address)
        self.deployer = self.w3.eth.contract(
            address=Web3.to_checksum_address(deployer_address),
            abi=DEPLOYER_ABI,
        )
        self.reader = reader or ChainReader(rpc_url, token_address, timeout=timeout, w3=self.w3)
        self.receipt_timeout = receipt_timeout
        self.min_balance_wei = min_balance_wei

        logger.info(
            "relayer_initialized",
            rpc_url=rpc_url,
            deployer=deployer_address,
            sender=self.account.address,
        )

    @property
    def address(self) -> str:
        """Relayer account address."""
        return self.account.address

    def check_relayer_balance(self) -> int:
        """
        Preflight: log the relayer's gas balance, warn when it is low.

        Returns the balance in wei. Never raises.
        """
        balance = self.reader.get_native_balance(self.account.address)
        logger.info(
            "relayer_balance",
            relayer=self.account.address,
            balance_eth=str(Web3.from_wei(balance, "ether")),
        )
        if balance < self.min_balance_wei:
            logger.warning(
                "relayer_balance_low",
                relayer=self.account.address,
                balance_wei=balance,
                minimum_wei=self.min_balance_wei,
            )
        return balance

    def sweep(self, wallet_address: str, salt: str, recipient: str) -> str:
        """
        Deploy (if needed) and sweep a burner wallet to its owner.

        Blocks until the transaction is mined.

        Returns:
            0x-prefixed transaction hash

        Raises:
            SweepExecutionError: estimation, submission, or execution failed
        """
        log = logger.bind(wallet=wallet_address, recipient=recipient)

        try:
            salt_bytes = salt_to_bytes32(salt)
            call = self.deployer.functions.deployAndSweepERC20(
                salt_bytes,
                self.token_address,
                Web3.to_checksum_address(recipient),
            )
            estimate = call.estimate_gas({"from": self.account.address})
        except Exception as e:
            log.error("sweep_estimate_failed", error=str(e))
            raise SweepExecutionError(wallet_address, f"gas estimation failed: {e}") from e

        gas_limit = apply_gas_margin(estimate)
        log.info("sweep_gas_estimated", estimate=estimate, gas_limit=gas_limit)

        try:
            tx_params = {
                "from": self.account.address,
                "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
                "gas": gas_limit,
                "chainId": self.chain_id,
            }
            gas_price = self.reader.get_gas_price()
            if gas_price:
                tx_params["gasPrice"] = gas_price

            tx = call.build_transaction(tx_params)
            signed_tx = self.account.sign_transaction(tx)
            tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed_tx.raw_transaction))
        except Exception as e:
            log.error("sweep_submission_failed", error=str(e))
            raise SweepExecutionError(wallet_address, f"submission failed: {e}") from e

        log.info("sweep_submitted", tx_hash=tx_hash, gas_price=gas_price)

        try:
            receipt: TxReceipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except Exception as e:
            log.error("sweep_receipt_failed", tx_hash=tx_hash, error=str(e))
            raise SweepExecutionError(
                wallet_address, f"no receipt: {e}", tx_hash=tx_hash
            ) from e

        if receipt["status"] != 1:
            log.error("sweep_reverted", tx_hash=tx_hash)
            raise SweepExecutionError(wallet_address, "transaction reverted", tx_hash=tx_hash)

        log.info(
            "sweep_confirmed",
            tx_hash=tx_hash,
            block=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )
        return tx_hash


def process_sweeps(
    submitter: SweepSubmitter,
    store: WalletDatabase,
    candidates: list[SweepCandidate],
    pause_seconds: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    log=None,
) -> list[SweepOutcome]:
    """
    Sweep candidates one at a time, in order, recording each success.

    Submissions from one relayer key are serialized and separated by
    `pause_seconds` to keep nonces ordered. A failing wallet is logged and
    skipped; it stays registered and is retried on a later cycle.
    """
    log = log or logger
    outcomes: list[SweepOutcome] = []

    for index, candidate in enumerate(candidates):
        if index > 0 and pause_seconds > 0:
            sleep(pause_seconds)

        wallet_log = log.bind(wallet=candidate.address)
        wallet_log.info(
            "sweep_started",
            position=index + 1,
            total=len(candidates),
            amount=str(candidate.balance),
            recipient=candidate.owner,
        )

        try:
            tx_hash = submitter.sweep(candidate.address, candidate.salt, candidate.owner)
        except SweepExecutionError as e:
            wallet_log.error("sweep_failed", error=e.message, tx_hash=e.tx_hash)
            outcomes.append(
                SweepOutcome(wallet=candidate.address, success=False, tx_hash=e.tx_hash, error=e.message)
            )
            continue
        except Exception as e:
            wallet_log.error("sweep_failed", error=str(e))
            outcomes.append(SweepOutcome(wallet=candidate.address, success=False, error=str(e)))
            continue

        try:
            store.record_sweep(candidate.address, tx_hash, candidate.balance, candidate.owner)
        except StorageError as e:
            # Confirmed on chain but not in the store
            wallet_log.error("sweep_record_failed", tx_hash=tx_hash, error=str(e))
            outcomes.append(
                SweepOutcome(
                    wallet=candidate.address,
                    success=True,
                    tx_hash=tx_hash,
                    amount=candidate.balance,
                    error=str(e),
                )
            )
            continue

        outcomes.append(
            SweepOutcome(
                wallet=candidate.address,
                success=True,
                tx_hash=tx_hash,
                amount=candidate.balance,
                recorded=True,
            )
        )

    return outcomes
