"""
Strategy Tick

One evaluation cycle across all configured locations:
1. Fetch open orders and USDC balance once (live mode only)
2. Scan every location concurrently
3. Skip locations already positioned or short on USDC
4. Submit (or, in dry-run, log) one order per qualifying location

Every location yields exactly one Reading; failures are recorded, not raised.
"""

import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from ..config import config, ScannerConfig, LocationConfig, get_location
from ..apis.open_meteo import OpenMeteoClient
from ..polymarket.auth import SigningIdentity, UsdcBalanceProvider, load_identity
from ..polymarket.client import ClobClient, ClobError
from ..polymarket.markets import BracketMarketReader
from ..monitoring import get_logger, trade_logger, TradeLogger
from .scanner import OpportunityScanner, Opportunity, SkipReason

logger = get_logger("tick")


@dataclass
class Reading:
    """Per-location outcome of one tick, in its interchange shape."""
    location: str
    forecast_high_f: float = 0.0
    sigma_f: float = 0.0
    target_bracket: Optional[str] = None
    best_edge: Optional[float] = None
    order_id: Optional[str] = None
    skipped_reason: Optional[str] = None
    scanned_at: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Reading":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def apply(self, opportunity: Opportunity):
        """Copy scan results onto the reading."""
        self.forecast_high_f = opportunity.forecast_high_f
        self.sigma_f = opportunity.sigma_f
        self.scanned_at = opportunity.scanned_at.isoformat()
        target = opportunity.target
        if target:
            self.target_bracket = target.label
            self.best_edge = target.edge
        if opportunity.skipped_reason:
            self.skipped_reason = opportunity.skipped_reason.value


class StrategyTick:
    """
    Runs one scan-and-trade cycle.
    """

    def __init__(
        self,
        scanner_config: ScannerConfig,
        scanner: OpportunityScanner,
        identity_loader: Callable[[str], SigningIdentity] = load_identity,
        balance_provider: Optional[UsdcBalanceProvider] = None,
        clob_factory: Callable[[SigningIdentity], ClobClient] = ClobClient,
        journal: Optional[TradeLogger] = None,
    ):
        """
        Initialize tick.

        Args:
            scanner_config: Locations, sizing and dry-run flag
            scanner: Opportunity scanner
            identity_loader: Resolves the wallet name to a signing identity
            balance_provider: USDC balance source (live mode)
            clob_factory: Builds the order-book client for an identity
            journal: Structured trade-decision log
        """
        self.config = scanner_config
        self.scanner = scanner
        self.locations: list[LocationConfig] = [get_location(key) for key in scanner_config.locations]
        self._identity_loader = identity_loader
        self._balance_provider = balance_provider
        self._clob_factory = clob_factory
        self.journal = journal or trade_logger

        self._identity: Optional[SigningIdentity] = None
        self._clob: Optional[ClobClient] = None

    @classmethod
    def from_config(cls, scanner_config: Optional[ScannerConfig] = None) -> "StrategyTick":
        """Wire a tick with real network clients."""
        scanner_config = scanner_config or config.scanner
        scanner = OpportunityScanner(
            OpenMeteoClient(),
            BracketMarketReader(),
            min_edge=scanner_config.min_edge,
            min_fair_value=scanner_config.min_fair_value,
        )
        balance_provider = None if scanner_config.dry_run else UsdcBalanceProvider()
        return cls(scanner_config, scanner, balance_provider=balance_provider)

    async def close(self):
        """Close all HTTP clients."""
        await self.scanner.forecasts.close()
        await self.scanner.markets.close()
        if self._clob:
            await self._clob.close()

    def _get_clob(self) -> ClobClient:
        """Load the identity and client once; credentials are cached per address."""
        if self._clob is None:
            self._identity = self._identity_loader(self.config.wallet_name)
            self._clob = self._clob_factory(self._identity)
        return self._clob

    async def _fetch_positioned_tokens(self, clob: ClobClient) -> set[str]:
        try:
            orders = await clob.get_open_orders()
        except (httpx.HTTPError, ClobError, ValueError) as e:
            logger.warning(f"Open orders unavailable, assuming none: {e}")
            return set()
        return {str(o.get("asset_id")) for o in orders if o.get("asset_id")}

    async def _fetch_balance(self, address: str) -> float:
        if self._balance_provider is None:
            return 0.0
        try:
            return await asyncio.to_thread(self._balance_provider.get_usdc_balance, address)
        except Exception as e:
            logger.warning(f"Balance unavailable, treating as 0: {e}")
            return 0.0

    async def run(self) -> list[Reading]:
        """
        Run one tick.

        Returns:
            One Reading per location, or an empty list if the tick itself failed
        """
        try:
            if self.config.dry_run:
                clob = None
                positioned: set[str] = set()
                balance: Optional[float] = None
            else:
                clob = self._get_clob()
                positioned = await self._fetch_positioned_tokens(clob)
                balance = await self._fetch_balance(clob.identity.address)
                logger.info(f"USDC balance: ${balance:.2f}")

            return list(await asyncio.gather(
                *(self._evaluate(location, clob, positioned, balance) for location in self.locations)
            ))

        except Exception as e:
            logger.error(f"Tick error: {e}")
            return []

    async def _evaluate(
        self,
        location: LocationConfig,
        clob: Optional[ClobClient],
        positioned: set[str],
        balance: Optional[float],
    ) -> Reading:
        """Scan one location and act on the result."""
        reading = Reading(location=location.key, scanned_at=datetime.now(timezone.utc).isoformat())

        try:
            opportunity = await self.scanner.scan(location)
            reading.apply(opportunity)

            if opportunity.skipped_reason:
                return self._skip(reading, location, opportunity.skipped_reason)

            best = opportunity.target
            logger.info(
                f"{location.label}: forecast {opportunity.forecast_high_f}°F | "
                f"bracket \"{best.label}\" | fair {best.fair_value:.1%} | "
                f"ask {best.ask_price:.1%} | edge {best.edge:.1%}"
            )

            if best.yes_token_id in positioned:
                return self._skip(reading, location, SkipReason.ALREADY_POSITIONED)

            size = self.config.trade_size_usdc

            if clob is None:
                self.journal.log_decision(
                    location.key, best.label, best.yes_token_id,
                    best.fair_value, best.ask_price, best.edge, size, dry_run=True,
                )
                logger.info(f"[dry-run] Would buy {size} USDC of \"{best.label}\" YES @ {best.ask_price:.3f}")
                return reading

            if balance < size:
                logger.info(f"{location.label}: insufficient USDC (${balance:.2f} < ${size})")
                return self._skip(reading, location, SkipReason.INSUFFICIENT_USDC)

            self.journal.log_decision(
                location.key, best.label, best.yes_token_id,
                best.fair_value, best.ask_price, best.edge, size, dry_run=False,
            )
            try:
                order = await clob.place_order(best.yes_token_id, best.ask_price, size)
            except (ClobError, httpx.HTTPError) as e:
                self.journal.log_execution(location.key, best.label, size, best.ask_price, None, False, str(e))
                raise

            reading.order_id = order.order_id
            self.journal.log_execution(location.key, best.label, size, best.ask_price, order.order_id, True)
            logger.info(f"{location.label}: order placed {order.order_id} | {size} USDC @ {best.ask_price:.3f}")

        except Exception as e:
            reading.skipped_reason = SkipReason.ERROR.value
            logger.error(f"{location.label}: error - {e}")

        return reading

    def _skip(self, reading: Reading, location: LocationConfig, reason: SkipReason) -> Reading:
        reading.skipped_reason = reason.value
        self.journal.log_skip(location.key, reason.value)
        logger.info(f"{location.label}: skipped ({reason.value})")
        return reading
