"""
Weather Bracket Discovery

Finds and parses Polymarket daily high-temperature bracket markets.

Polymarket weather markets structure:
- Slug: highest-temperature-in-{city}-on-{month}-{day}-{year}
- Multi-outcome events, one binary market per bracket
  (e.g., "40-41°F", "33°F or below", "48°F or higher")
- Ask prices come from the CLOB /price endpoint
"""

import json
import math
import re
import httpx
from dataclasses import dataclass
from datetime import datetime, date, timezone
from typing import Optional

from ..config import config, LocationConfig
from ..monitoring import get_logger

logger = get_logger("markets")

MONTHS = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]

_RANGE = re.compile(r"^(-?\d+)\s*-\s*(-?\d+)\s*°?\s*([FC])$", re.IGNORECASE)
_BELOW = re.compile(r"^(-?\d+)\s*°?\s*([FC])\s+or\s+(?:below|lower)$", re.IGNORECASE)
_ABOVE = re.compile(r"^(-?\d+)\s*°?\s*([FC])\s+or\s+(?:higher|above)$", re.IGNORECASE)


@dataclass(frozen=True)
class Bracket:
    """A single tradeable temperature range for a location/date."""
    label: str
    lo: float  # inclusive; -inf for the lower terminal bracket
    hi: float  # inclusive; +inf for the upper terminal bracket
    yes_token_id: str
    condition_id: str
    is_terminal: bool
    accepting_orders: bool
    close_time: datetime

    @property
    def is_tradeable(self) -> bool:
        """Open-ended and closed brackets stay priceable but are never bought."""
        return not self.is_terminal and self.accepting_orders


def format_date_slug(d: date) -> str:
    """date(2026, 2, 25) -> "february-25-2026"."""
    return f"{MONTHS[d.month - 1]}-{d.day}-{d.year}"


def build_event_slug(location: LocationConfig, d: date) -> str:
    """Build the Polymarket event slug for a location's daily high market."""
    return f"highest-temperature-in-{location.slug_name}-on-{format_date_slug(d)}"


def _to_fahrenheit(value: float, unit: str) -> float:
    if unit.upper() == "C":
        return value * 9 / 5 + 32
    return value


def parse_bracket_label(label: str) -> tuple[float, float]:
    """
    Parse a bracket label into inclusive Fahrenheit bounds.

    Examples:
        "40-41°F" -> (40, 41)
        "33°F or below" -> (-inf, 33)
        "48°F or higher" -> (48, inf)
        "10-11°C" -> (50, 51.8)

    Raises:
        ValueError: if the label is not a recognised bracket format
    """
    text = label.strip()

    match = _RANGE.match(text)
    if match:
        unit = match.group(3)
        return (
            _to_fahrenheit(float(match.group(1)), unit),
            _to_fahrenheit(float(match.group(2)), unit),
        )

    match = _BELOW.match(text)
    if match:
        return (-math.inf, _to_fahrenheit(float(match.group(1)), match.group(2)))

    match = _ABOVE.match(text)
    if match:
        return (_to_fahrenheit(float(match.group(1)), match.group(2)), math.inf)

    raise ValueError(f"Cannot parse bracket: {label!r}")


def _parse_token_ids(raw) -> list[str]:
    """Gamma returns clobTokenIds either as a list or a JSON-encoded string."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return []
    if not isinstance(raw, list):
        return []
    return [str(t) for t in raw]


def _parse_close_time(raw: Optional[str]) -> datetime:
    if raw:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except ValueError:
            pass
    return datetime.now(timezone.utc)


class BracketMarketReader:
    """
    Reads weather bracket markets from Polymarket.

    Uses the Gamma API for discovery and the public CLOB price endpoint
    for asks. No authentication required.
    """

    def __init__(
        self,
        gamma_url: str = "",
        clob_url: str = "",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.gamma_url = gamma_url or config.api.polymarket_gamma_url
        self.clob_url = clob_url or config.api.polymarket_clob_url
        self.client = client or httpx.AsyncClient(timeout=config.api.http_timeout)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def get_brackets(self, location: LocationConfig, target_date: date) -> list[Bracket]:
        """
        Fetch all brackets for a location's daily high market.

        Returns:
            Brackets sorted by lower bound, or an empty list when no event exists
        """
        slug = build_event_slug(location, target_date)
        response = await self.client.get(
            f"{self.gamma_url}/events",
            params={"slug": slug},
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
        events = response.json()

        if isinstance(events, dict):
            events = [events]
        if not events or not events[0].get("markets"):
            return []

        brackets = []
        for market in events[0]["markets"]:
            bracket = self._parse_market(market)
            if bracket:
                brackets.append(bracket)

        logger.debug(f"{slug}: {len(brackets)} brackets")
        return sorted(brackets, key=lambda b: b.lo if math.isfinite(b.lo) else -999)

    def _parse_market(self, market: dict) -> Optional[Bracket]:
        """Parse a single bracket market, or None for unrecognised formats."""
        label = market.get("groupItemTitle") or ""
        token_ids = _parse_token_ids(market.get("clobTokenIds"))
        if not label or not token_ids:
            return None

        try:
            lo, hi = parse_bracket_label(label)
        except ValueError:
            logger.debug(f"Skipping unrecognised bracket label {label!r}")
            return None

        return Bracket(
            label=label,
            lo=lo,
            hi=hi,
            yes_token_id=token_ids[0],
            condition_id=market.get("conditionId", ""),
            is_terminal=math.isinf(lo) or math.isinf(hi),
            accepting_orders=bool(market.get("acceptingOrders", False)),
            close_time=_parse_close_time(market.get("endDate")),
        )

    async def get_ask_price(self, token_id: str) -> Optional[float]:
        """
        Get the price to buy YES for a token.

        Returns:
            Ask price (0-1), or None when the price is unavailable
        """
        try:
            response = await self.client.get(
                f"{self.clob_url}/price",
                params={"token_id": token_id, "side": "sell"},
                headers={"Accept": "application/json"},
            )
            if response.status_code != 200:
                return None
            price = float(response.json().get("price", ""))
        except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
            logger.debug(f"Price unavailable for {token_id}: {e}")
            return None

        return None if math.isnan(price) else price
