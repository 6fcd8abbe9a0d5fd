"""
Read-only view onto the chain: token balances, native balance, block
height, gas price.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol, Union

import structlog
from web3 import Web3

from .errors import ChainReadError

logger = structlog.get_logger()

DEFAULT_TOKEN_DECIMALS = 6

# ERC-20 ABI (minimal for balance reads)
ERC20_ABI = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]


class BalanceReader(Protocol):
    """Read port used by the orchestrator."""

    def get_block_number(self) -> int: ...

    def get_token_balance(self, address: str) -> int: ...


def format_token_amount(amount: int, decimals: int = DEFAULT_TOKEN_DECIMALS) -> Decimal:
    """
    Convert minor units to display units, exactly.

    Examples:
        >>> format_token_amount(2_000_000)
        Decimal('2')
        >>> format_token_amount(1, 6)
        Decimal('0.000001')
    """
    return Decimal(amount) / (Decimal(10) ** decimals)


def parse_token_amount(
    value: Union[int, float, str, Decimal], decimals: int = DEFAULT_TOKEN_DECIMALS
) -> int:
    """
    Convert a display amount to integer minor units with exact precision.

    Floats go through str() first: float(0.1) * 1e6 is not 100000.

    Raises:
        ValueError: if the value is not a finite number or has more
            precision than the token allows
    """
    if isinstance(value, Decimal):
        dec_value = value
    else:
        try:
            dec_value = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"Amount {value!r} is not a number") from e

    if not dec_value.is_finite():
        raise ValueError(f"Amount {value!r} is not finite")

    minor = dec_value * (Decimal(10) ** decimals)
    if minor != minor.to_integral_value():
        raise ValueError(f"Amount {value} results in fractional minor units: {minor}")

    return int(minor)


class ChainReader:
    """
    Client for chain reads.

    Every call is one JSON-RPC round trip. Per-wallet reads never raise:
    failures are logged and reported as zero so one unreachable wallet
    cannot stop a scan.
    """

    def __init__(
        self,
        rpc_url: str,
        token_address: str,
        timeout: float = 30.0,
        w3: Optional[Web3] = None,
    ):
        self.rpc_url = rpc_url
        self.w3 = w3 or Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
        )
        self.token_address = Web3.to_checksum_address(token_address)
        self.token = self.w3.eth.contract(address=self.token_address, abi=ERC20_ABI)

    def get_block_number(self) -> int:
        """Get current block height. Raises ChainReadError on failure."""
        try:
            return int(self.w3.eth.block_number)
        except Exception as e:
            logger.error("chain_read_failed", query="block_number", error=str(e))
            raise ChainReadError(f"block_number: {e}") from e

    def get_token_balance(self, address: str) -> int:
        """Token balance in minor units, 0 if the read fails."""
        try:
            balance = self.token.functions.balanceOf(
                Web3.to_checksum_address(address)
            ).call()
            return int(balance)
        except Exception as e:
            logger.error("chain_read_failed", query="balance_of", wallet=address, error=str(e))
            return 0

    def get_native_balance(self, address: str) -> int:
        """Native (gas) balance in wei, 0 if the read fails."""
        try:
            return int(self.w3.eth.get_balance(Web3.to_checksum_address(address)))
        except Exception as e:
            logger.error("chain_read_failed", query="get_balance", wallet=address, error=str(e))
            return 0

    def get_gas_price(self) -> int:
        """Current gas price in wei, 0 if the read fails."""
        try:
            return int(self.w3.eth.gas_price)
        except Exception as e:
            logger.error("chain_read_failed", query="gas_price", error=str(e))
            return 0

    def get_token_decimals(self) -> int:
        """Token decimals, falling back to 6 if the read fails."""
        try:
            return int(self.token.functions.decimals().call())
        except Exception as e:
            logger.warning("chain_read_failed", query="decimals", error=str(e))
            return DEFAULT_TOKEN_DECIMALS
