"""
Tests for the opportunity scanner.
"""

import math
import pytest
import httpx
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from weather_arb.config import get_location
from weather_arb.apis.open_meteo import Forecast
from weather_arb.polymarket.markets import Bracket, parse_bracket_label
from weather_arb.strategy.scanner import (
    OpportunityScanner,
    Candidate,
    Skip,
    SkipReason,
    local_today,
)

# 7pm EST on Feb 25; the market closes five hours later
NOW = datetime(2026, 2, 26, 0, 0, tzinfo=timezone.utc)
CLOSE = datetime(2026, 2, 26, 5, 0, tzinfo=timezone.utc)


def _bracket(label, token, accepting=True, close_time=CLOSE):
    lo, hi = parse_bracket_label(label)
    return Bracket(
        label=label,
        lo=lo,
        hi=hi,
        yes_token_id=token,
        condition_id=f"0xcond{token}",
        is_terminal=math.isinf(lo) or math.isinf(hi),
        accepting_orders=accepting,
        close_time=close_time,
    )


def _ladder(close_time=CLOSE):
    return [
        _bracket("41°F or below", "1", close_time=close_time),
        _bracket("42-43°F", "2", close_time=close_time),
        _bracket("44-46°F", "3", close_time=close_time),
        _bracket("47°F or higher", "4", close_time=close_time),
    ]


class TestOpportunityScanner:
    """Tests for per-location scanning."""

    @pytest.fixture
    def nyc(self):
        return get_location("nyc")

    @pytest.fixture
    def forecasts(self):
        forecasts = MagicMock()
        forecasts.get_daily_high = AsyncMock(return_value=Forecast(high_f=45.0))
        return forecasts

    @pytest.fixture
    def markets(self):
        asks = {"1": 0.02, "2": 0.20, "3": 0.30, "4": 0.10}
        markets = MagicMock()
        markets.get_brackets = AsyncMock(return_value=_ladder())
        markets.get_ask_price = AsyncMock(side_effect=lambda token_id: asks.get(token_id))
        return markets

    @pytest.fixture
    def scanner(self, forecasts, markets):
        return OpportunityScanner(
            forecasts, markets, min_edge=0.20, min_fair_value=0.40, clock=lambda: NOW
        )

    def test_local_today(self, nyc):
        assert local_today(nyc, NOW) == date(2026, 2, 25)
        assert local_today(get_location("seoul"), NOW) == date(2026, 2, 26)

    @pytest.mark.asyncio
    async def test_candidate(self, scanner, markets, nyc):
        opportunity = await scanner.scan(nyc)

        assert isinstance(opportunity.outcome, Candidate)
        assert opportunity.target.label == "44-46°F"
        assert opportunity.target.edge == pytest.approx(0.2467, abs=1e-3)
        assert opportunity.forecast_high_f == 45.0
        assert opportunity.sigma_f == 2.0
        assert opportunity.skipped_reason is None

        # Location-local date drives the slug
        assert markets.get_brackets.call_args.args == (nyc, date(2026, 2, 25))
        # Terminal brackets are never priced
        priced_tokens = {call.args[0] for call in markets.get_ask_price.call_args_list}
        assert priced_tokens == {"2", "3"}

    @pytest.mark.asyncio
    async def test_explicit_target_date(self, scanner, markets, nyc):
        await scanner.scan(nyc, target_date=date(2026, 2, 26))
        assert markets.get_brackets.call_args.args == (nyc, date(2026, 2, 26))

    @pytest.mark.asyncio
    async def test_no_market(self, scanner, markets, nyc):
        markets.get_brackets.return_value = []

        opportunity = await scanner.scan(nyc)

        assert opportunity.outcome == Skip(SkipReason.NO_MARKET)
        assert opportunity.forecast_high_f == 45.0
        assert opportunity.sigma_f == 0.0
        markets.get_ask_price.assert_not_called()

    @pytest.mark.asyncio
    async def test_market_closing_soon(self, scanner, markets, nyc):
        markets.get_brackets.return_value = _ladder(close_time=datetime(2026, 2, 26, 0, 20, tzinfo=timezone.utc))

        opportunity = await scanner.scan(nyc)

        assert opportunity.skipped_reason == SkipReason.MARKET_CLOSING_SOON
        markets.get_ask_price.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_edge(self, scanner, markets, nyc):
        markets.get_ask_price.side_effect = lambda token_id: 0.50

        opportunity = await scanner.scan(nyc)

        assert opportunity.skipped_reason == SkipReason.NO_EDGE
        assert opportunity.target is None
        assert len(opportunity.priced) == 2

    @pytest.mark.asyncio
    async def test_sigma_grows_with_horizon(self, scanner, markets, nyc):
        markets.get_brackets.return_value = _ladder(close_time=datetime(2026, 2, 27, 6, 0, tzinfo=timezone.utc))

        opportunity = await scanner.scan(nyc)

        assert opportunity.sigma_f == 4.0

    @pytest.mark.asyncio
    async def test_unpriceable_brackets_dropped(self, scanner, markets, nyc):
        """A failed or missing price removes that bracket; the rest still scan."""
        def ask(token_id):
            if token_id == "2":
                raise httpx.ReadTimeout("timed out")
            return 0.30

        markets.get_ask_price.side_effect = ask

        opportunity = await scanner.scan(nyc)

        assert [p.label for p in opportunity.priced] == ["44-46°F"]
        assert opportunity.target.label == "44-46°F"

    @pytest.mark.asyncio
    async def test_closed_bracket_never_traded(self, scanner, markets, nyc):
        """A bracket not accepting orders is neither priced nor selected, even with the best edge."""
        markets.get_brackets.return_value = [
            _bracket("41°F or below", "1"),
            _bracket("42-43°F", "2"),
            _bracket("44-46°F", "3", accepting=False),
            _bracket("47°F or higher", "4"),
        ]

        opportunity = await scanner.scan(nyc)

        priced_tokens = {call.args[0] for call in markets.get_ask_price.call_args_list}
        assert priced_tokens == {"2"}
        assert [p.yes_token_id for p in opportunity.priced] == ["2"]
        assert opportunity.skipped_reason == SkipReason.NO_EDGE

    @pytest.mark.asyncio
    async def test_forecast_failure_raises(self, scanner, forecasts, nyc):
        forecasts.get_daily_high.side_effect = httpx.ConnectError("down")

        with pytest.raises(httpx.ConnectError):
            await scanner.scan(nyc)
