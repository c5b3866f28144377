"""
Open-Meteo API Client

Provides the daily high-temperature forecast used to price weather brackets.
Uses Open-Meteo's auto-selected best model blend.

Free API with no key required.
"""

import httpx
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..config import config, LocationConfig
from ..monitoring import get_logger

logger = get_logger("open_meteo")

MAX_RETRIES = 3
BASE_BACKOFF = 2.0  # seconds


class MarketDataError(Exception):
    """A 2xx response that is missing the data we need."""


@dataclass
class Forecast:
    """Daily high-temperature forecast for a location."""
    high_f: float
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class OpenMeteoClient:
    """Client for Open-Meteo weather API."""

    def __init__(self, base_url: str = "", client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url or config.api.open_meteo_base_url
        self.client = client or httpx.AsyncClient(timeout=config.api.http_timeout)

        # Rate limiting state
        self._rate_limit_until: Optional[datetime] = None
        self._consecutive_failures = 0

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def reset_rate_limit(self):
        """Reset the rate limit state to allow fresh API calls."""
        self._rate_limit_until = None
        self._consecutive_failures = 0

    async def _request_with_retry(self, endpoint: str, params: dict) -> dict:
        """Make a request with retry logic and exponential backoff."""
        if self._rate_limit_until and datetime.now() < self._rate_limit_until:
            wait_seconds = (self._rate_limit_until - datetime.now()).total_seconds()
            raise MarketDataError(f"Open-Meteo rate limited - retry after {wait_seconds:.0f}s")

        last_error: Optional[Exception] = None
        for attempt in range(MAX_RETRIES):
            try:
                response = await self.client.get(endpoint, params=params)

                if response.status_code == 429:
                    self._consecutive_failures += 1
                    cooldown = min(300, BASE_BACKOFF ** (self._consecutive_failures + 2))  # Max 5 min
                    self._rate_limit_until = datetime.now() + timedelta(seconds=cooldown)
                    logger.warning(f"Open-Meteo rate limited (429). Cooldown: {cooldown}s")

                response.raise_for_status()
                self._consecutive_failures = 0
                return response.json()

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code == 429:
                    raise
                if e.response.status_code < 500:
                    raise
            except httpx.TransportError as e:
                last_error = e

            if attempt < MAX_RETRIES - 1:
                backoff = BASE_BACKOFF ** attempt
                logger.debug(f"Open-Meteo request failed, retrying in {backoff}s (attempt {attempt + 1})")
                await asyncio.sleep(backoff)

        raise last_error

    async def get_daily_high(self, location: LocationConfig) -> Forecast:
        """
        Get today's forecast high for a location.

        Args:
            location: Location with coordinates and timezone

        Returns:
            Forecast with the high in Fahrenheit
        """
        endpoint = f"{self.base_url}/forecast"
        params = {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "daily": "temperature_2m_max",
            "temperature_unit": "fahrenheit",
            "timezone": location.timezone,
            "forecast_days": 2,
        }

        data = await self._request_with_retry(endpoint, params)

        highs = (data.get("daily") or {}).get("temperature_2m_max") or []
        if not highs or highs[0] is None:
            raise MarketDataError(f"Open-Meteo: no temperature data for {location.key}")

        return Forecast(high_f=float(highs[0]))
