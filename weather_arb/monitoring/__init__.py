"""
Monitoring module for logging.

Provides:
- Structured logging with loguru
- JSON trade-decision log
"""

from .logger import setup_logging, get_logger, TradeLogger, trade_logger

__all__ = ["setup_logging", "get_logger", "TradeLogger", "trade_logger"]
