"""
Logging Configuration

Uses loguru for structured, colorful logging with:
- Console output with colors
- File rotation
- JSON format for trade decisions
"""

import sys
from pathlib import Path
from typing import Optional
from loguru import logger

from ..config import config


def setup_logging(
    log_dir: Optional[str] = None,
    log_level: str = None,
    rotation: str = "10 MB",
    retention: str = "30 days",
) -> None:
    """
    Configure logging for the application.

    Args:
        log_dir: Directory for log files (default: <data_dir>/logs)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        rotation: Log file rotation size
        retention: How long to keep old logs
    """
    log_level = log_level or config.log_level

    log_path = Path(log_dir) if log_dir else config.scanner.data_dir / "logs"
    log_path.mkdir(parents=True, exist_ok=True)

    # Remove default handler
    logger.remove()

    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        colorize=True,
    )

    logger.add(
        log_path / "weather_arb.log",
        level=log_level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        rotation=rotation,
        retention=retention,
        compression="gz",
    )

    # Trade-specific log file (JSON format for analysis)
    logger.add(
        log_path / "trades.json",
        level="INFO",
        format="{message}",
        filter=lambda record: record["extra"].get("trade_log", False),
        rotation="1 day",
        retention="90 days",
        serialize=True,
    )

    logger.add(
        log_path / "errors.log",
        level="ERROR",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}\n{exception}",
        rotation=rotation,
        retention=retention,
        compression="gz",
    )

    logger.info(f"Logging initialized at level {log_level}")


def get_logger(name: str = "weather_arb"):
    """
    Get a named logger instance.

    Args:
        name: Logger name for context

    Returns:
        Logger instance bound to the name
    """
    return logger.bind(name=name)


class TradeLogger:
    """
    Specialized logger for trade decisions.

    Dry-run and live decisions share one event shape; live executions
    additionally carry the exchange order id.
    """

    def __init__(self):
        self.logger = logger.bind(trade_log=True)

    def log_decision(
        self,
        location: str,
        bracket: str,
        token_id: str,
        fair_value: float,
        ask_price: float,
        edge: float,
        size_usdc: float,
        dry_run: bool,
    ):
        """Log a would-be or actual purchase decision."""
        self.logger.info({
            "event": "decision",
            "location": location,
            "bracket": bracket,
            "token_id": token_id,
            "fair_value": fair_value,
            "ask_price": ask_price,
            "edge": edge,
            "size_usdc": size_usdc,
            "dry_run": dry_run,
        })

    def log_execution(
        self,
        location: str,
        bracket: str,
        size_usdc: float,
        price: float,
        order_id: Optional[str],
        success: bool,
        error: str = None,
    ):
        """Log an order submission outcome."""
        self.logger.info({
            "event": "execution",
            "location": location,
            "bracket": bracket,
            "size_usdc": size_usdc,
            "price": price,
            "order_id": order_id,
            "success": success,
            "error": error,
        })

    def log_skip(self, location: str, reason: str):
        """Log a skipped location."""
        self.logger.info({
            "event": "skip",
            "location": location,
            "reason": reason,
        })


# Global trade logger instance
trade_logger = TradeLogger()
