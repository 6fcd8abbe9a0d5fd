"""
Configuration for the auto-sweep service.

All settings can be overridden via environment variables or a `.env` file.
"""

from pathlib import Path
from typing import Optional

import structlog
from eth_account import Account
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

from .chain import parse_token_amount

logger = structlog.get_logger()

# Base Sepolia USDC
DEFAULT_TOKEN_ADDRESS = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"


class Settings(BaseSettings):
    """Environment-based settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Network
    rpc_url: str = Field(
        default="https://sepolia.base.org",
        validation_alias=AliasChoices("RPC_URL", "BASE_SEPOLIA_RPC"),
    )
    chain_id: int = 84532
    rpc_timeout_seconds: float = 30.0

    # Contracts
    token_address: str = Field(
        default=DEFAULT_TOKEN_ADDRESS,
        validation_alias=AliasChoices("TOKEN_ADDRESS", "USDC_ADDRESS"),
    )
    deployer_address: str = ""

    # Relayer
    relayer_private_key: str = ""
    relayer_address: str = ""
    receipt_timeout_seconds: float = 120.0
    # 0.01 ETH
    min_relayer_balance_wei: int = 10**16

    # Fees
    fee_recipient: str = ""
    fee_amount: str = Field(
        default="0.5",
        description="Fee per sweep in display units",
        validation_alias=AliasChoices("FEE_AMOUNT", "FEE_AMOUNT_USDC"),
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./auto_sweep.db",
        validation_alias=AliasChoices("DATABASE_URL", "DATABASE_PATH"),
    )

    # Monitoring
    poll_interval_ms: int = Field(default=5000, gt=0)
    # 1 USDC at 6 decimals
    min_balance_to_sweep: int = Field(default=1_000_000, ge=0)
    scan_batch_size: int = Field(default=100, gt=0)
    scan_delay_ms: int = Field(default=100, ge=0)
    sweep_pause_ms: int = Field(default=2000, ge=0)

    # Registration API
    api_host: str = "127.0.0.1"
    api_port: int = 8080
    api_token: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def error_backoff_seconds(self) -> float:
        """Wait after a failed cycle: double the normal interval."""
        return self.poll_interval_seconds * 2

    @property
    def scan_delay_seconds(self) -> float:
        return self.scan_delay_ms / 1000

    @property
    def sweep_pause_seconds(self) -> float:
        return self.sweep_pause_ms / 1000

    @property
    def relayer_configured(self) -> bool:
        """Whether sweeps can actually be submitted."""
        return bool(self.relayer_private_key and self.deployer_address)

    def missing_required(self) -> list[str]:
        """Names of required settings that are unset."""
        required = {
            "DEPLOYER_ADDRESS": self.deployer_address,
            "RELAYER_PRIVATE_KEY": self.relayer_private_key,
            "FEE_RECIPIENT": self.fee_recipient,
        }
        return [name for name, value in required.items() if not value]

    def warn_missing(self) -> list[str]:
        """
        Log a warning per missing or malformed setting.

        Neither stops startup so the service can be exercised locally
        without a funded relayer. Returns the missing setting names.
        """
        missing = self.missing_required()
        for name in missing:
            logger.warning("config_missing", setting=name)

        addresses = {
            "TOKEN_ADDRESS": self.token_address,
            "DEPLOYER_ADDRESS": self.deployer_address,
            "FEE_RECIPIENT": self.fee_recipient,
            "RELAYER_ADDRESS": self.relayer_address,
        }
        for name, value in addresses.items():
            if value and not Web3.is_address(value):
                logger.warning("config_invalid", setting=name, value=value)

        try:
            parse_token_amount(self.fee_amount)
        except ValueError:
            logger.warning("config_invalid", setting="FEE_AMOUNT", value=self.fee_amount)

        if self.relayer_private_key:
            try:
                derived = Account.from_key(self.relayer_private_key).address
            except ValueError:
                logger.warning("config_invalid", setting="RELAYER_PRIVATE_KEY")
            else:
                if self.relayer_address and derived.lower() != self.relayer_address.lower():
                    logger.warning(
                        "relayer_address_mismatch",
                        configured=self.relayer_address,
                        derived=derived,
                    )
        return missing


def load_settings(env_path: Optional[Path] = None) -> Settings:
    """Load settings, optionally from an explicit env file."""
    return Settings(_env_file=env_path) if env_path else Settings()
