"""
Karat Pricing - Shared Helpers
===============================
Pure utility functions with NO database or module dependencies.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")


def now_utc() -> datetime:
    """Returns current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def to_decimal(value) -> Decimal:
    """Convert int/float/str/Decimal to Decimal via str() (no binary float noise)."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def safe_decimal(value, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Safely convert to Decimal. Returns default on failure."""
    if value is None or str(value).strip() == "":
        return default
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return default


def round_money(value) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value) -> Optional[str]:
    """Decimal → '1234.50' (JSON-safe, exact)."""
    if value is None:
        return None
    return str(round_money(value))


def truncate(text, limit: int) -> str:
    """Stringify and cut to limit characters."""
    return str(text)[:limit]


def format_money(value) -> str:
    """Format an amount with comma separators and two decimals."""
    if value is None:
        return "0.00"
    try:
        return "{:,.2f}".format(round_money(value))
    except (InvalidOperation, ValueError, TypeError):
        return str(value)
