"""
Bracket Pricing Model

Converts a point forecast into a fair probability for each temperature
bracket and compares it with the market ask.

Fair value = P(lo - 0.5 <= T < hi + 0.5) for T ~ N(forecast, sigma²)

Brackets settle on whole degrees, so the half-degree step widens each
bracket to the continuous range that rounds into it.

Edge = Fair Value - Ask Price
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional

from scipy import stats

from ..config import config, PricingConfig
from ..polymarket.markets import Bracket


@dataclass(frozen=True)
class PricedBracket:
    """A bracket with an observed ask and our model's fair value."""
    bracket: Bracket
    ask_price: float   # price to buy YES (0-1)
    fair_value: float  # model probability (0-1)

    @property
    def edge(self) -> float:
        return self.fair_value - self.ask_price

    @property
    def label(self) -> str:
        return self.bracket.label

    @property
    def yes_token_id(self) -> str:
        return self.bracket.yes_token_id


def forecast_sigma(hours_until_close: float, pricing: Optional[PricingConfig] = None) -> float:
    """
    Forecast uncertainty (°F) for a given horizon.

    Linear between (near_hours, near_sigma) and (far_hours, far_sigma),
    flat outside. Defaults: 2°F at <= 6h, 4°F at >= 30h.
    """
    p = pricing or config.pricing
    if hours_until_close <= p.near_hours:
        return p.near_sigma_f
    if hours_until_close >= p.far_hours:
        return p.far_sigma_f
    fraction = (hours_until_close - p.near_hours) / (p.far_hours - p.near_hours)
    return p.near_sigma_f + fraction * (p.far_sigma_f - p.near_sigma_f)


def bracket_fair_value(
    lo: float,
    hi: float,
    mu: float,
    sigma: float,
    half_step: Optional[float] = None,
) -> float:
    """
    Probability that the reported high lands in [lo, hi].

    Args:
        lo: Inclusive lower bound (-inf for an open lower end)
        hi: Inclusive upper bound (+inf for an open upper end)
        mu: Forecast high
        sigma: Forecast uncertainty, must be positive
        half_step: Boundary widening (default from PricingConfig)

    Returns:
        Probability clamped to [0, 1]
    """
    if sigma <= 0:
        raise ValueError(f"sigma must be positive, got {sigma}")
    step = config.pricing.boundary_half_step if half_step is None else half_step

    lo_cdf = 0.0 if math.isinf(lo) and lo < 0 else float(stats.norm.cdf(lo - step, loc=mu, scale=sigma))
    hi_cdf = 1.0 if math.isinf(hi) and hi > 0 else float(stats.norm.cdf(hi + step, loc=mu, scale=sigma))

    return max(0.0, min(1.0, hi_cdf - lo_cdf))


def price_bracket(bracket: Bracket, ask_price: float, mu: float, sigma: float) -> PricedBracket:
    """Attach fair value and ask to a bracket."""
    return PricedBracket(
        bracket=bracket,
        ask_price=ask_price,
        fair_value=bracket_fair_value(bracket.lo, bracket.hi, mu, sigma),
    )


def rank_by_edge(priced: Iterable[PricedBracket]) -> list[PricedBracket]:
    """Highest edge first; equal edges keep their input order."""
    return sorted(priced, key=lambda p: p.edge, reverse=True)


def select_best(
    priced: Iterable[PricedBracket],
    min_edge: float,
    min_fair_value: float,
) -> Optional[PricedBracket]:
    """
    Pick the highest-edge bracket meeting both thresholds.

    Returns:
        The winning PricedBracket, or None if nothing qualifies
    """
    for candidate in rank_by_edge(priced):
        if candidate.edge >= min_edge and candidate.fair_value >= min_fair_value:
            return candidate
    return None
