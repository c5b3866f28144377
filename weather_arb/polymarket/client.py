"""
Polymarket CLOB Client

Handles authenticated order management on Polymarket's Central Limit Order Book.

Auth model:
- L1: EIP-712 ClobAuth signature exchanged once for API credentials
  (key, secret, passphrase), cached per wallet address
- L2: HMAC-SHA256 of (timestamp + METHOD + path + body) with the secret,
  recomputed for every request
- Orders carry their own EIP-712 Order signature from the same wallet
"""

import base64
import hashlib
import hmac
import json
import secrets
import time
import httpx
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from ..config import config
from ..monitoring import get_logger
from .auth import SigningIdentity

logger = get_logger("clob")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
AUTH_MESSAGE = "This message attests that I control the given wallet"

AUTH_TYPES = {
    "ClobAuth": [
        {"name": "address", "type": "address"},
        {"name": "timestamp", "type": "string"},
        {"name": "nonce", "type": "int256"},
        {"name": "message", "type": "string"},
    ],
}

ORDER_TYPES = {
    "Order": [
        {"name": "salt", "type": "uint256"},
        {"name": "maker", "type": "address"},
        {"name": "signer", "type": "address"},
        {"name": "taker", "type": "address"},
        {"name": "tokenId", "type": "uint256"},
        {"name": "makerAmount", "type": "uint256"},
        {"name": "takerAmount", "type": "uint256"},
        {"name": "expiration", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "feeRateBps", "type": "uint256"},
        {"name": "side", "type": "uint8"},
        {"name": "signatureType", "type": "uint8"},
    ],
}

SIDE_BUY = 0
SIGNATURE_TYPE_EOA = 0

# Credentials stay valid until revoked, so they live for the process lifetime
_CREDS_CACHE: dict[str, "ApiCredentials"] = {}


class ClobError(Exception):
    """Base error for CLOB protocol failures."""


class ClobAuthError(ClobError):
    """L1 credential derivation returned an unusable response."""


class OrderRejectedError(ClobError):
    """The exchange refused an order."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ClobProtocolError(ClobError):
    """A success response that is missing required fields."""


@dataclass(frozen=True)
class ApiCredentials:
    """L2 API credentials derived from an L1 signature."""
    api_key: str
    secret: str
    passphrase: str


@dataclass
class PlacedOrder:
    """An order accepted by the exchange."""
    order_id: str
    status: str
    token_id: str
    price: float
    size_usdc: float


def to_fixed_6(value) -> int:
    """Convert an amount to 6-decimal fixed point, truncating."""
    return int((Decimal(str(value)) * 1_000_000).to_integral_value(rounding=ROUND_DOWN))


def order_amounts(price: float, size_usdc: float) -> tuple[int, int]:
    """
    Maker/taker amounts for a BUY of `size_usdc` worth of shares at `price`.

    The maker pays USDC; the taker leg is outcome tokens. Both are 6-decimal.
    """
    if not 0 < price < 1:
        raise ValueError(f"Price must be between 0 and 1, got {price}")
    if size_usdc <= 0:
        raise ValueError(f"Order size must be positive, got {size_usdc}")

    size = Decimal(str(size_usdc))
    tokens = size / Decimal(str(price))
    return to_fixed_6(size), to_fixed_6(tokens)


def build_hmac_signature(secret: str, timestamp: str, method: str, path: str, body: str = "") -> str:
    """
    L2 request signature.

    The secret is url-safe base64; the digest is returned url-safe base64 encoded.
    """
    message = timestamp + method.upper() + path + body
    key = base64.urlsafe_b64decode(secret)
    digest = hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8")


class ClobClient:
    """
    Authenticated client for trading on Polymarket CLOB.
    """

    def __init__(
        self,
        identity: SigningIdentity,
        base_url: str = "",
        client: Optional[httpx.AsyncClient] = None,
        creds_cache: Optional[dict] = None,
    ):
        self.identity = identity
        self.base_url = (base_url or config.api.polymarket_clob_url).rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=config.api.http_timeout)
        self._creds_cache = _CREDS_CACHE if creds_cache is None else creds_cache

        self.auth_domain = {
            "name": "ClobAuthDomain",
            "version": "1",
            "chainId": config.polygon.chain_id,
        }
        self.order_domain = {
            "name": "Polymarket CTF Exchange",
            "version": "1",
            "chainId": config.polygon.chain_id,
            "verifyingContract": config.polygon.exchange_address,
        }

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ── L1 ────────────────────────────────────────────────────────────────

    async def get_api_creds(self) -> ApiCredentials:
        """
        Derive (or return cached) API credentials for this identity.

        Raises:
            httpx.HTTPStatusError: if the auth endpoint rejects the signature
            ClobAuthError: if the response lacks apiKey/secret/passphrase
        """
        address = self.identity.address
        cached = self._creds_cache.get(address)
        if cached:
            return cached

        timestamp = str(int(time.time()))
        signature = self.identity.sign_typed_data(
            self.auth_domain,
            AUTH_TYPES,
            "ClobAuth",
            {
                "address": address,
                "timestamp": timestamp,
                "nonce": 0,
                "message": AUTH_MESSAGE,
            },
        )

        response = await self.client.get(
            f"{self.base_url}/auth/api-key",
            headers={
                "POLY_ADDRESS": address,
                "POLY_SIGNATURE": signature,
                "POLY_TIMESTAMP": timestamp,
                "POLY_NONCE": "0",
            },
        )
        response.raise_for_status()
        data = response.json()

        api_key = data.get("apiKey") if isinstance(data, dict) else None
        secret = data.get("secret") if isinstance(data, dict) else None
        passphrase = data.get("passphrase") if isinstance(data, dict) else None
        if not (api_key and secret and passphrase):
            raise ClobAuthError(f"CLOB auth: unexpected response shape: {data!r}")

        creds = ApiCredentials(api_key=api_key, secret=secret, passphrase=passphrase)
        self._creds_cache[address] = creds
        logger.info(f"Derived CLOB API credentials for {address}")
        return creds

    # ── L2 ────────────────────────────────────────────────────────────────

    def l2_headers(self, creds: ApiCredentials, method: str, path: str, body: str = "") -> dict[str, str]:
        """Signed headers for a single L2 request."""
        timestamp = str(int(time.time()))
        return {
            "Content-Type": "application/json",
            "POLY_ADDRESS": self.identity.address,
            "POLY_SIGNATURE": build_hmac_signature(creds.secret, timestamp, method, path, body),
            "POLY_TIMESTAMP": timestamp,
            "POLY_NONCE": "0",
            "POLY_API_KEY": creds.api_key,
            "POLY_PASSPHRASE": creds.passphrase,
        }

    async def _signed_request(self, method: str, path: str, payload: Optional[dict] = None) -> httpx.Response:
        """Send an L2-signed request. The signed body is exactly the bytes sent."""
        creds = await self.get_api_creds()
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""
        headers = self.l2_headers(creds, method, path, body)
        return await self.client.request(
            method,
            f"{self.base_url}{path}",
            headers=headers,
            content=body.encode("utf-8") if body else None,
        )

    # ── Orders ────────────────────────────────────────────────────────────

    def build_signed_order(self, token_id: str, price: float, size_usdc: float) -> dict:
        """
        Build and sign a GTC BUY order for `size_usdc` of YES at `price`.

        Returns:
            Order dict ready for the /order payload
        """
        maker_amount, taker_amount = order_amounts(price, size_usdc)
        salt = secrets.randbelow(10 ** 15)
        address = self.identity.address

        struct = {
            "salt": salt,
            "maker": address,
            "signer": address,
            "taker": ZERO_ADDRESS,
            "tokenId": int(token_id),
            "makerAmount": maker_amount,
            "takerAmount": taker_amount,
            "expiration": 0,  # GTC
            "nonce": 0,
            "feeRateBps": 0,
            "side": SIDE_BUY,
            "signatureType": SIGNATURE_TYPE_EOA,
        }
        signature = self.identity.sign_typed_data(self.order_domain, ORDER_TYPES, "Order", struct)

        return {
            "salt": salt,
            "maker": address,
            "signer": address,
            "taker": ZERO_ADDRESS,
            "tokenId": str(token_id),
            "makerAmount": str(maker_amount),
            "takerAmount": str(taker_amount),
            "expiration": "0",
            "nonce": "0",
            "feeRateBps": "0",
            "side": "BUY",
            "signatureType": SIGNATURE_TYPE_EOA,
            "signature": signature,
        }

    async def place_order(self, token_id: str, price: float, size_usdc: float) -> PlacedOrder:
        """
        Place a GTC limit BUY on the YES token.

        Args:
            token_id: Outcome token to buy
            price: Limit price (0-1)
            size_usdc: USDC to spend

        Returns:
            PlacedOrder with the exchange order id

        Raises:
            OrderRejectedError: non-2xx response or an explicit error in the body
            ClobProtocolError: success response without an order id
        """
        creds = await self.get_api_creds()
        payload = {
            "order": self.build_signed_order(token_id, price, size_usdc),
            "owner": creds.api_key,
            "orderType": "GTC",
        }

        response = await self._signed_request("POST", "/order", payload)

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if not response.is_success:
            message = data.get("errorMsg") or data.get("error") or response.text
            raise OrderRejectedError(
                f"CLOB order failed ({response.status_code}): {message}",
                status_code=response.status_code,
            )

        error = data.get("errorMsg") or data.get("error")
        if error:
            raise OrderRejectedError(f"CLOB order rejected: {error}", status_code=response.status_code)

        order_id = data.get("orderID") or data.get("orderId")
        if not order_id:
            raise ClobProtocolError(f"CLOB order response missing orderID: {data!r}")

        return PlacedOrder(
            order_id=order_id,
            status=data.get("status", "unknown"),
            token_id=str(token_id),
            price=price,
            size_usdc=size_usdc,
        )

    async def get_open_orders(self) -> list[dict]:
        """
        Get all open orders for this identity.

        Returns:
            List of open order dicts (each carries `id` and `asset_id`)
        """
        response = await self._signed_request("GET", "/orders?market_status=open")
        response.raise_for_status()
        data = response.json()

        if isinstance(data, dict):
            data = data.get("data", [])
        return data if isinstance(data, list) else []

    async def cancel_order(self, order_id: str) -> None:
        """Cancel an open order."""
        response = await self._signed_request("DELETE", "/order", {"orderID": order_id})
        response.raise_for_status()

    async def cancel_all(self, token_id: Optional[str] = None) -> int:
        """
        Cancel open orders, optionally only those for one token.

        Returns:
            Number of orders cancelled
        """
        cancelled = 0
        for order in await self.get_open_orders():
            order_id = order.get("id")
            if not order_id:
                continue
            if token_id and order.get("asset_id") != token_id:
                continue
            try:
                await self.cancel_order(order_id)
                cancelled += 1
            except httpx.HTTPError as e:
                logger.warning(f"Failed to cancel {order_id}: {e}")

        return cancelled
