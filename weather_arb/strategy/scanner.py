"""
Opportunity Scanner

Per location: fetch the forecast, read the day's bracket market, price every
tradeable bracket and pick the best edge.

Ordinary no-opportunity outcomes come back as a Skip; only transport and
parse failures raise.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from enum import Enum
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

from ..config import config, LocationConfig, PricingConfig
from ..apis.open_meteo import OpenMeteoClient
from ..polymarket.markets import BracketMarketReader, Bracket
from ..monitoring import get_logger
from .pricing import PricedBracket, forecast_sigma, price_bracket, rank_by_edge, select_best

logger = get_logger("scanner")


class SkipReason(str, Enum):
    """Why a location produced no trade. Values are what observers see."""
    NO_MARKET = "no_market"
    MARKET_CLOSING_SOON = "market_closing_soon"
    NO_EDGE = "no_edge"
    ALREADY_POSITIONED = "already_positioned"
    INSUFFICIENT_USDC = "insufficient_usdc"
    ERROR = "error"


@dataclass(frozen=True)
class Candidate:
    """The best qualifying bracket."""
    target: PricedBracket

    @property
    def edge(self) -> float:
        return self.target.edge


@dataclass(frozen=True)
class Skip:
    """No trade for this location."""
    reason: SkipReason


@dataclass
class Opportunity:
    """Result of scanning one location."""
    location: LocationConfig
    forecast_high_f: float
    sigma_f: float
    outcome: Union[Candidate, Skip]
    priced: list[PricedBracket] = field(default_factory=list)
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def target(self) -> Optional[PricedBracket]:
        return self.outcome.target if isinstance(self.outcome, Candidate) else None

    @property
    def skipped_reason(self) -> Optional[SkipReason]:
        return self.outcome.reason if isinstance(self.outcome, Skip) else None


def local_today(location: LocationConfig, now: Optional[datetime] = None) -> date:
    """Calendar date at the location, which is what the market slug uses."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(location.timezone)).date()


class OpportunityScanner:
    """
    Finds the best-edge bracket for a location.
    """

    def __init__(
        self,
        forecasts: OpenMeteoClient,
        markets: BracketMarketReader,
        min_edge: float,
        min_fair_value: float,
        pricing: Optional[PricingConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize scanner.

        Args:
            forecasts: Forecast provider
            markets: Bracket market reader
            min_edge: Minimum fair - ask to qualify
            min_fair_value: Minimum fair probability to qualify
            pricing: Sigma and close-buffer constants
            clock: Returns the current UTC time (injectable for tests)
        """
        self.forecasts = forecasts
        self.markets = markets
        self.min_edge = min_edge
        self.min_fair_value = min_fair_value
        self.pricing = pricing or config.pricing
        self.clock = clock

    async def price_brackets(
        self,
        brackets: list[Bracket],
        forecast_high_f: float,
        sigma_f: float,
    ) -> list[PricedBracket]:
        """
        Fetch asks concurrently and price each bracket.

        A bracket whose price cannot be fetched is dropped.
        """
        asks = await asyncio.gather(
            *(self.markets.get_ask_price(b.yes_token_id) for b in brackets),
            return_exceptions=True,
        )

        priced = []
        for bracket, ask in zip(brackets, asks):
            if ask is None or isinstance(ask, BaseException):
                if isinstance(ask, BaseException):
                    logger.debug(f"Price fetch failed for {bracket.label}: {ask}")
                continue
            priced.append(price_bracket(bracket, ask, forecast_high_f, sigma_f))

        return rank_by_edge(priced)

    async def scan(self, location: LocationConfig, target_date: Optional[date] = None) -> Opportunity:
        """
        Scan one location.

        Args:
            location: Location to scan
            target_date: Market date (default: today at the location)

        Returns:
            Opportunity with either a Candidate or a Skip
        """
        now = self.clock()
        target_date = target_date or local_today(location, now)

        # 1. Forecast
        forecast = await self.forecasts.get_daily_high(location)

        # 2. Market brackets
        brackets = await self.markets.get_brackets(location, target_date)
        if not brackets:
            return Opportunity(location, forecast.high_f, 0.0, Skip(SkipReason.NO_MARKET), scanned_at=now)

        # 3. Time-to-close guard
        seconds_until_close = (min(b.close_time for b in brackets) - now).total_seconds()
        if seconds_until_close < self.pricing.close_buffer_minutes * 60:
            return Opportunity(
                location, forecast.high_f, 0.0, Skip(SkipReason.MARKET_CLOSING_SOON), scanned_at=now
            )

        # 4. Uncertainty from horizon
        sigma_f = forecast_sigma(seconds_until_close / 3600, self.pricing)

        # 5. Price tradeable brackets only
        tradeable = [b for b in brackets if b.is_tradeable]
        priced = await self.price_brackets(tradeable, forecast.high_f, sigma_f)

        # 6. Best qualifying edge
        best = select_best(priced, self.min_edge, self.min_fair_value)
        outcome = Candidate(best) if best else Skip(SkipReason.NO_EDGE)

        return Opportunity(location, forecast.high_f, sigma_f, outcome, priced=priced, scanned_at=now)
