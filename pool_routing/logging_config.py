"""
Logging configuration for cleaner output.

Usage:
    from pool_routing import logging_config
    logging_config.setup()
"""

import logging
import sys


def setup(level=logging.INFO):
    """
    Configure logging for cleaner, more readable output.

    - Suppresses verbose access logs from the aiohttp metrics server
    - Uses shorter timestamp format (HH:MM:SS instead of full datetime)
    """

    # Root logger - minimal format
    root = logging.getLogger()
    root.setLevel(level)

    # Clear existing handlers
    root.handlers.clear()

    # Create console handler with clean format
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)

    # Minimal format: time + level + message
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-7s | %(message)s", datefmt="%H:%M:%S"
    )
    console.setFormatter(formatter)
    root.addHandler(console)

    # Suppress noisy loggers
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    # Keep application loggers at the requested level
    logging.getLogger("pool_routing").setLevel(level)


def setup_from_config(log_level: str = "INFO"):
    """Configure logging from an observability ``log_level`` name."""
    setup(level=getattr(logging, log_level.upper(), logging.INFO))
