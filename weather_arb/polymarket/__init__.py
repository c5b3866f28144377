"""
Polymarket integration module.

Handles:
- Signing identity and USDC balance
- Weather bracket discovery and ask prices
- Order execution via CLOB API
"""

from .auth import SigningIdentity, UsdcBalanceProvider, WalletNotFoundError, load_identity
from .client import (
    ClobClient,
    ClobError,
    ClobAuthError,
    ClobProtocolError,
    OrderRejectedError,
    ApiCredentials,
    PlacedOrder,
)
from .markets import BracketMarketReader, Bracket, parse_bracket_label, format_date_slug

__all__ = [
    "SigningIdentity",
    "UsdcBalanceProvider",
    "WalletNotFoundError",
    "load_identity",
    "ClobClient",
    "ClobError",
    "ClobAuthError",
    "ClobProtocolError",
    "OrderRejectedError",
    "ApiCredentials",
    "PlacedOrder",
    "BracketMarketReader",
    "Bracket",
    "parse_bracket_label",
    "format_date_slug",
]
