"""
Tests for the strategy tick.
"""

import pytest
import httpx
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from weather_arb.config import config, get_location
from weather_arb.polymarket.client import OrderRejectedError, PlacedOrder, ClobProtocolError
from weather_arb.polymarket.markets import Bracket
from weather_arb.strategy.pricing import PricedBracket
from weather_arb.strategy.scanner import Candidate, Opportunity, Skip, SkipReason
from weather_arb.strategy.tick import Reading, StrategyTick

CLOSE = datetime(2026, 2, 26, 5, 0, tzinfo=timezone.utc)


def _candidate(location_key="nyc", token="3", ask=0.30, fair=0.55):
    bracket = Bracket(
        label="44-46°F",
        lo=44,
        hi=46,
        yes_token_id=token,
        condition_id="0xcond",
        is_terminal=False,
        accepting_orders=True,
        close_time=CLOSE,
    )
    priced = PricedBracket(bracket, ask_price=ask, fair_value=fair)
    return Opportunity(get_location(location_key), 45.0, 2.0, Candidate(priced), priced=[priced])


def _skip(location_key, reason):
    return Opportunity(get_location(location_key), 45.0, 0.0, Skip(reason))


class TestStrategyTick:
    """Tests for one scan-and-trade cycle."""

    @pytest.fixture
    def scanner(self):
        scanner = MagicMock()
        scanner.scan = AsyncMock(side_effect=lambda location: _candidate(location.key))
        scanner.forecasts.close = AsyncMock()
        scanner.markets.close = AsyncMock()
        return scanner

    @pytest.fixture
    def clob(self):
        clob = MagicMock()
        clob.identity.address = "0xabc"
        clob.get_open_orders = AsyncMock(return_value=[])
        clob.place_order = AsyncMock(
            return_value=PlacedOrder(order_id="0xorder", status="live", token_id="3", price=0.30, size_usdc=5.0)
        )
        clob.close = AsyncMock()
        return clob

    @pytest.fixture
    def balance(self):
        provider = MagicMock()
        provider.get_usdc_balance.return_value = 100.0
        return provider

    @pytest.fixture
    def journal(self):
        return MagicMock()

    def _tick(self, scanner, clob, balance, journal, **overrides):
        scanner_config = replace(
            config.scanner,
            **{
                "locations": ["nyc"],
                "dry_run": False,
                "trade_amount_usdc": 5.0,
                "max_position_usdc": 10.0,
                "wallet_name": "test",
                **overrides,
            },
        )
        identity_loader = MagicMock(return_value=clob.identity)
        return StrategyTick(
            scanner_config,
            scanner,
            identity_loader=identity_loader,
            balance_provider=balance,
            clob_factory=MagicMock(return_value=clob),
            journal=journal,
        )

    @pytest.mark.asyncio
    async def test_places_order(self, scanner, clob, balance, journal):
        tick = self._tick(scanner, clob, balance, journal)

        readings = await tick.run()

        assert len(readings) == 1
        reading = readings[0]
        assert reading.location == "nyc"
        assert reading.order_id == "0xorder"
        assert reading.skipped_reason is None
        assert reading.target_bracket == "44-46°F"
        assert reading.best_edge == pytest.approx(0.25)
        clob.place_order.assert_awaited_once_with("3", 0.30, 5.0)
        journal.log_execution.assert_called_once()

    @pytest.mark.asyncio
    async def test_size_capped_by_max_position(self, scanner, clob, balance, journal):
        tick = self._tick(scanner, clob, balance, journal, trade_amount_usdc=20.0, max_position_usdc=10.0)

        await tick.run()

        clob.place_order.assert_awaited_once_with("3", 0.30, 10.0)

    @pytest.mark.asyncio
    async def test_insufficient_usdc(self, scanner, clob, balance, journal):
        balance.get_usdc_balance.return_value = 3.0
        tick = self._tick(scanner, clob, balance, journal)

        readings = await tick.run()

        assert readings[0].skipped_reason == "insufficient_usdc"
        assert readings[0].order_id is None
        clob.place_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_already_positioned(self, scanner, clob, balance, journal):
        clob.get_open_orders.return_value = [{"id": "0xold", "asset_id": "3"}]
        tick = self._tick(scanner, clob, balance, journal)

        readings = await tick.run()

        assert readings[0].skipped_reason == "already_positioned"
        clob.place_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_open_orders_failure_assumes_none(self, scanner, clob, balance, journal):
        clob.get_open_orders.side_effect = httpx.ConnectError("down")
        tick = self._tick(scanner, clob, balance, journal)

        readings = await tick.run()

        assert readings[0].order_id == "0xorder"

    @pytest.mark.asyncio
    async def test_dry_run_never_signs(self, scanner, clob, balance, journal):
        tick = self._tick(scanner, clob, balance, journal, dry_run=True)

        readings = await tick.run()

        assert readings[0].order_id is None
        assert readings[0].skipped_reason is None
        assert readings[0].target_bracket == "44-46°F"
        tick._identity_loader.assert_not_called()
        tick._clob_factory.assert_not_called()
        balance.get_usdc_balance.assert_not_called()
        journal.log_decision.assert_called_once()
        assert journal.log_decision.call_args.kwargs["dry_run"] is True

    @pytest.mark.asyncio
    async def test_scan_skip_recorded(self, scanner, clob, balance, journal):
        scanner.scan.side_effect = lambda location: _skip(location.key, SkipReason.NO_EDGE)
        tick = self._tick(scanner, clob, balance, journal)

        readings = await tick.run()

        assert readings[0].skipped_reason == "no_edge"
        assert readings[0].forecast_high_f == 45.0
        journal.log_skip.assert_called_once_with("nyc", "no_edge")
        clob.place_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_location_errors_are_isolated(self, scanner, clob, balance, journal):
        def scan(location):
            if location.key == "chicago":
                raise httpx.ConnectError("open-meteo down")
            return _candidate(location.key)

        scanner.scan.side_effect = scan
        tick = self._tick(scanner, clob, balance, journal, locations=["nyc", "chicago", "miami"])

        readings = await tick.run()

        assert [r.location for r in readings] == ["nyc", "chicago", "miami"]
        assert readings[1].skipped_reason == "error"
        assert readings[0].order_id == readings[2].order_id == "0xorder"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        OrderRejectedError("not enough balance", status_code=400),
        ClobProtocolError("missing orderID"),
    ])
    async def test_order_failure_is_error(self, scanner, clob, balance, journal, error):
        clob.place_order.side_effect = error
        tick = self._tick(scanner, clob, balance, journal)

        readings = await tick.run()

        assert readings[0].skipped_reason == "error"
        assert readings[0].order_id is None
        assert journal.log_execution.call_args.args[5] is False

    @pytest.mark.asyncio
    async def test_missing_wallet_fails_tick(self, scanner, clob, balance, journal):
        tick = self._tick(scanner, clob, balance, journal)
        tick._identity_loader.side_effect = LookupError("no wallet")

        assert await tick.run() == []

    @pytest.mark.asyncio
    async def test_close(self, scanner, clob, balance, journal):
        tick = self._tick(scanner, clob, balance, journal)
        await tick.run()

        await tick.close()

        scanner.forecasts.close.assert_awaited_once()
        scanner.markets.close.assert_awaited_once()
        clob.close.assert_awaited_once()


class TestReading:
    """Tests for the reading interchange shape."""

    def test_round_trip(self):
        reading = Reading(location="nyc", forecast_high_f=45.0, sigma_f=2.0, skipped_reason="no_edge")
        assert Reading.from_dict({**reading.to_dict(), "unknown": 1}) == reading

    def test_keys(self):
        assert set(Reading(location="nyc").to_dict()) == {
            "location", "forecast_high_f", "sigma_f", "target_bracket",
            "best_edge", "order_id", "skipped_reason", "scanned_at",
        }
