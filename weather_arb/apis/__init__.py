"""
Weather API clients for forecast data collection.

Supports:
- Open-Meteo: Free best-match daily high forecasts
"""

from .open_meteo import OpenMeteoClient, Forecast, MarketDataError

__all__ = [
    "OpenMeteoClient",
    "Forecast",
    "MarketDataError",
]
