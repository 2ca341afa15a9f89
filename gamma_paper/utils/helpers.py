"""
Helper functions and utilities
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pytz

EASTERN = pytz.timezone("US/Eastern")


def format_currency(amount, decimals: int = 2) -> str:
    """
    Format amount as currency

    Example:
        >>> format_currency(1234.56)
        '$1,234.56'
        >>> format_currency(-75)
        '-$75.00'
    """
    try:
        amount = float(amount) if amount else 0.0
    except (ValueError, TypeError):
        amount = 0.0
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.{decimals}f}"


def format_percentage(value: float, decimals: int = 2) -> str:
    """
    Format value as percentage

    Args:
        value: Decimal value (0.05 = 5%)
        decimals: Number of decimal places

    Example:
        >>> format_percentage(0.0525)
        '5.25%'
    """
    return f"{value * 100:.{decimals}f}%"


def parse_option_symbol(symbol: str) -> Optional[Dict[str, Any]]:
    """
    Parse OCC option symbol format

    Args:
        symbol: Option symbol (e.g., 'SPY 250117P00600000')

    Returns:
        Dictionary with parsed components or None if invalid

    Example:
        >>> parse_option_symbol('SPY 250117P00600000')["strike"]
        600.0
    """
    # OCC format: ROOT YYMMDDCP########
    pattern = r'^([A-Z/]+)\s*(\d{6})([CP])(\d{8})$'
    match = re.match(pattern, symbol)

    if not match:
        return None

    root, exp_date, opt_type, strike_str = match.groups()

    year = 2000 + int(exp_date[:2])
    month = int(exp_date[2:4])
    day = int(exp_date[4:6])

    return {
        "underlying": root,
        # OCC contracts stop trading at the 16:00 ET close
        "expiration": EASTERN.localize(datetime(year, month, day, 16, 0)).astimezone(timezone.utc),
        "type": "CALL" if opt_type == "C" else "PUT",
        "strike": float(strike_str) / 1000.0,
        "full_symbol": symbol
    }


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_weekend(moment: datetime) -> bool:
    """True when the moment falls on a Saturday or Sunday in US/Eastern"""
    return ensure_utc(moment).astimezone(EASTERN).weekday() >= 5
