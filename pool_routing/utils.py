"""
Common utilities and helper functions for the pool routing system.

This module provides centralized helpers for logging, timestamps, decimal
conversion and basis point math.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

from .exceptions import ValidationError


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


# Decimal utilities
def to_decimal(value: Any, field: str = "value") -> Decimal:
    """
    Convert a numeric fact to Decimal without going through binary floats.

    Args:
        value: int, str, float or Decimal
        field: Name used in the error message

    Returns:
        Decimal representation of value

    Raises:
        ValidationError: If value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be numeric, got {value!r}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(
            f"{field} must be numeric, got {value!r}", {"field": field}
        ) from e


def shorten_address(address: str, width: int = 4) -> str:
    """Shorten a long account address for log output (``AbCd..WxYz``)."""
    if len(address) <= width * 2 + 2:
        return address
    return f"{address[:width]}..{address[-width:]}"


# Math utilities
def calculate_percentage(value: float, total: float) -> float:
    """Calculate percentage with zero-division protection."""
    if total == 0:
        return 0.0
    return (value / total) * 100


def clamp(value: float, min_val: float, max_val: float) -> float:
    """Clamp value between min and max bounds."""
    return max(min_val, min(value, max_val))


def basis_points_to_decimal(bps: float) -> Decimal:
    """Convert basis points to decimal (100 bps = 0.01)."""
    return Decimal(str(bps)) / Decimal("10000")


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


def format_profit(decimal_profit) -> str:
    """Format a decimal profit value as a percentage string.

    Examples:
        >>> format_profit(0.0123)
        '+1.23%'
        >>> format_profit(-0.0456)
        '-4.56%'
    """
    percentage = float(decimal_profit) * 100

    if percentage >= 0:
        return f"+{percentage:.2f}%"
    else:
        return f"{percentage:.2f}%"
