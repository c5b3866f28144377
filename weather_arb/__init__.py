"""
Weather Arb - Polymarket Weather Bracket Arbitrage Scanner

Compares Open-Meteo temperature forecasts against Polymarket bracket
prices and buys underpriced YES brackets when the edge clears a threshold.
"""

__version__ = "0.1.0"
