"""
Trading strategy components.

Includes:
- Bracket pricing (normal CDF fair value, edge ranking)
- Opportunity scanning per location
- The strategy tick (scan, gate, order)
"""

from .pricing import (
    PricedBracket,
    forecast_sigma,
    bracket_fair_value,
    price_bracket,
    rank_by_edge,
    select_best,
)
from .scanner import (
    OpportunityScanner,
    Opportunity,
    Candidate,
    Skip,
    SkipReason,
    local_today,
)
from .tick import StrategyTick, Reading

__all__ = [
    # Pricing
    "PricedBracket",
    "forecast_sigma",
    "bracket_fair_value",
    "price_bracket",
    "rank_by_edge",
    "select_best",
    # Scanner
    "OpportunityScanner",
    "Opportunity",
    "Candidate",
    "Skip",
    "SkipReason",
    "local_today",
    # Tick
    "StrategyTick",
    "Reading",
]
