"""
Common utilities and helper functions for the peg arbitrage bot.

Provides the logger factory used by every module plus a few timestamp and
basis-point helpers shared by the simulator and the execution pipeline.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Union

BPS_DENOMINATOR = 10000


# Timestamp utilities
def timestamp_to_iso(timestamp: float) -> str:
    """Convert Unix timestamp to ISO 8601 string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


# Basis point utilities
def bps_to_percent(bps: Union[int, Decimal]) -> Decimal:
    """Convert basis points to a Decimal percentage (100 bps = 1%)."""
    return Decimal(bps) / Decimal(100)


def apply_bps_haircut(amount_raw: int, bps: int) -> int:
    """
    Subtract ``bps`` basis points from an integer amount, rounding down.

    This is the same integer arithmetic the on-chain contracts use for fees
    and minimum-output checks: ``amount * (10000 - bps) // 10000``.
    """
    if bps < 0 or bps >= BPS_DENOMINATOR:
        raise ValueError(f"bps must be in [0, {BPS_DENOMINATOR}), got {bps}")
    return amount_raw * (BPS_DENOMINATOR - bps) // BPS_DENOMINATOR


def format_profit(value: Decimal, symbol: str = "USD") -> str:
    """Format a signed profit amount, e.g. ``+12.34 USD``."""
    sign = "+" if value >= 0 else "-"
    return f"{sign}{abs(value):.2f} {symbol}"


# Logging utilities
def get_logger(
    name: str,
    level: Union[str, int] = logging.INFO,
    extra: Optional[Dict[str, Any]] = None,
    minimal: bool = False,
) -> logging.Logger:
    """
    Get a structured logger with consistent formatting and extra context.

    Args:
        name: Logger name (typically __name__)
        level: Logging level
        extra: Additional context fields to include in all log messages
        minimal: If True, use simplified format (time + message only)

    Returns:
        Configured logger with structured output
    """
    logger = logging.getLogger(name)

    if logger.level == logging.NOTSET:
        logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()

        if minimal:
            format_str = "%(asctime)s | %(message)s"
        else:
            format_str = (
                "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | " "%(message)s"
            )

        if extra:
            extra_fields = " | ".join([f"{k}=%(extra_{k})s" for k in extra.keys()])
            format_str = format_str.replace(
                " | %(message)s", f" | {extra_fields} | %(message)s"
            )

        formatter = logging.Formatter(format_str, datefmt="%H:%M:%S")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        if extra:
            logger = logging.LoggerAdapter(
                logger, {"extra_" + k: v for k, v in extra.items()}
            )

    return logger
