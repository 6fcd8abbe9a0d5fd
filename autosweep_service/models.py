"""
Pydantic models for the registration API.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .db import MonitoredWallet, SweepRecord


class AddWalletRequest(BaseModel):
    """Request to start monitoring a burner wallet."""

    address: str = Field(..., description="Burner wallet address (0x...)")
    owner: str = Field(..., description="Owner address that receives swept funds (0x...)")
    salt: str = Field(..., description="Deployment salt (hex, up to 32 bytes)")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "address": "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa",
                    "owner": "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb",
                    "salt": "0x01",
                }
            ]
        }
    }


class WalletResponse(BaseModel):
    """A monitored wallet."""

    address: str
    owner: str
    salt: str
    created_at: int = Field(..., description="Registration time (epoch ms)")
    last_checked_at: int = Field(..., description="Last balance check (epoch ms)")
    sweep_count: int

    @classmethod
    def from_wallet(cls, wallet: MonitoredWallet) -> "WalletResponse":
        return cls(
            address=wallet.address,
            owner=wallet.owner,
            salt=wallet.salt,
            created_at=wallet.created_at,
            last_checked_at=wallet.last_checked_at,
            sweep_count=wallet.sweep_count,
        )


class SweepRecordResponse(BaseModel):
    """A confirmed sweep."""

    id: int
    wallet_address: str
    tx_hash: str
    amount: str = Field(..., description="Swept amount in token minor units")
    recipient: str
    timestamp: int = Field(..., description="Record time (epoch ms)")

    @classmethod
    def from_record(cls, record: SweepRecord) -> "SweepRecordResponse":
        return cls(
            id=record.id,
            wallet_address=record.wallet_address,
            tx_hash=record.tx_hash,
            amount=record.amount,
            recipient=record.recipient,
            timestamp=record.timestamp,
        )


class RemoveWalletResponse(BaseModel):
    success: bool
    address: str


class StatsResponse(BaseModel):
    total_wallets: int
    total_sweeps: int


class HealthResponse(BaseModel):
    """Service health."""

    status: str = Field(..., description="ok or degraded")
    version: str
    chain_rpc: bool = Field(..., description="Chain endpoint reachable")
    block_number: Optional[int] = None
    phase: str = Field(..., description="Current cycle phase")
    relayer: Optional[str] = Field(None, description="Relayer address, None in dry run")
