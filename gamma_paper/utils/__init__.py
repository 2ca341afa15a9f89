"""Utility functions and helpers"""

from .logger import setup_logger
from .helpers import (
    ensure_utc,
    format_currency,
    format_percentage,
    is_weekend,
    parse_option_symbol,
    utc_now,
)

__all__ = [
    "setup_logger",
    "ensure_utc",
    "format_currency",
    "format_percentage",
    "is_weekend",
    "parse_option_symbol",
    "utc_now",
]
