"""
Polymarket Signing Identity

Handles the trading wallet and stablecoin balance checks for Polymarket CLOB.

Polymarket uses:
- Polygon network for trading
- USDC as the trading currency
- EIP-712 typed-data signatures for both API auth and orders
"""

import os
from dataclasses import dataclass, field
from typing import Any, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from ..config import config
from ..monitoring import get_logger

logger = get_logger("auth")

# Minimal ERC20 ABI for balanceOf
ERC20_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    }
]

_DOMAIN_FIELDS = {
    "name": {"name": "name", "type": "string"},
    "version": {"name": "version", "type": "string"},
    "chainId": {"name": "chainId", "type": "uint256"},
    "verifyingContract": {"name": "verifyingContract", "type": "address"},
}


class WalletNotFoundError(LookupError):
    """No private key is configured for the requested wallet name."""


@dataclass
class SigningIdentity:
    """
    An EVM account able to produce EIP-712 signatures.

    The private key never leaves this object; callers only see the
    public address and signatures.
    """
    name: str
    _account: Any = field(repr=False)

    @property
    def address(self) -> str:
        """Checksummed public address."""
        return self._account.address

    def sign_typed_data(self, domain: dict, types: dict, primary_type: str, message: dict) -> str:
        """
        Sign an EIP-712 structure.

        Args:
            domain: Domain separator values
            types: Struct definitions (without EIP712Domain)
            primary_type: Name of the struct being signed
            message: Struct values

        Returns:
            0x-prefixed hex signature
        """
        full_message = {
            "types": {
                "EIP712Domain": [_DOMAIN_FIELDS[k] for k in _DOMAIN_FIELDS if k in domain],
                **types,
            },
            "primaryType": primary_type,
            "domain": domain,
            "message": message,
        }
        signable = encode_typed_data(full_message=full_message)
        signed = self._account.sign_message(signable)
        return Web3.to_hex(signed.signature)


def _wallet_env_var(name: str) -> str:
    return f"WALLET_{name.upper().replace('-', '_')}_PRIVATE_KEY"


def load_identity(wallet_name: str) -> SigningIdentity:
    """
    Load a signing identity by wallet name.

    Looks up WALLET_<NAME>_PRIVATE_KEY, falling back to POLYGON_PRIVATE_KEY
    for the "default" wallet.

    Raises:
        WalletNotFoundError: if no key is configured for the name
        ValueError: if the configured key is malformed
    """
    private_key = os.getenv(_wallet_env_var(wallet_name), "")
    if not private_key and wallet_name == "default":
        private_key = os.getenv("POLYGON_PRIVATE_KEY", "")

    if not private_key:
        raise WalletNotFoundError(
            f'EVM wallet "{wallet_name}" not found. Set {_wallet_env_var(wallet_name)} in .env'
        )

    # Ensure proper format
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key

    try:
        account = Account.from_key(private_key)
    except Exception as e:
        raise ValueError(f'Invalid private key for wallet "{wallet_name}": {e}') from e

    return SigningIdentity(name=wallet_name, _account=account)


class UsdcBalanceProvider:
    """Reads spendable USDC on Polygon."""

    def __init__(self, rpc_url: str = "", usdc_address: str = ""):
        self.w3 = Web3(Web3.HTTPProvider(rpc_url or config.polygon.rpc_url))
        self.usdc_address = usdc_address or config.polygon.usdc_address

    def get_usdc_balance(self, address: Optional[str]) -> float:
        """
        Get USDC balance on Polygon.

        Failures report 0.0 so a balance check can only ever fail toward
        "insufficient".

        Returns:
            USDC balance (human-readable, 6 decimals adjusted)
        """
        if not address:
            return 0.0

        try:
            contract = self.w3.eth.contract(
                address=Web3.to_checksum_address(self.usdc_address),
                abi=ERC20_BALANCE_ABI,
            )
            balance_raw = contract.functions.balanceOf(
                Web3.to_checksum_address(address)
            ).call()

            # USDC has 6 decimals
            return balance_raw / 1_000_000

        except Exception as e:
            logger.warning(f"Error fetching USDC balance for {address}: {e}")
            return 0.0
