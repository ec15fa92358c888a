# Helpers for the finances import service

import uuid
from datetime import datetime, date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MONEY_QUANTUM = Decimal("0.01")


def generate_uid():
    """
    Generate unique record ID (UUID4 string).
    """
    return str(uuid.uuid4())


def now_timestamp() -> str:
    """Current time in the YYYY-MM-DD HH:MM:SS format used for created_at/updated_at."""
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def empty_to_none(value):
    """Convert empty string or whitespace-only string to None.

    This ensures we store NULL in the database instead of empty strings,
    maintaining data integrity and query consistency.

    Args:
        value: Any value, typically a string from a spreadsheet cell or JSON body

    Returns:
        None if value is empty/whitespace/None, otherwise the value
    """
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def to_money(value):
    """
    Convert a number or numeric string to a Decimal rounded to 2 places (half-up).

    Returns None if the value cannot be read as a number.

    Examples:
        3.5 → Decimal("3.50")
        "12,345" → Decimal("12.35")
        2.675 → Decimal("2.68")
        "abc" → None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        # str() gives the shortest repr, so 2.675 stays 2.675 instead of 2.67499...
        value = str(value)
    if isinstance(value, str):
        value = value.strip().replace(" ", "").replace(",", ".")
        if not value:
            return None
    try:
        amount = Decimal(value)
        if not amount.is_finite():
            return None
        return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        return None


def validate_date_format(date_str: str) -> bool:
    """
    Validate date string is in YYYY-MM-DD format.

    Returns True if valid, False otherwise.
    """
    try:
        datetime.strptime(date_str, '%Y-%m-%d')
        return True
    except (ValueError, TypeError):
        return False


def validate_month(month: int) -> bool:
    """Validate month is 1-12."""
    return isinstance(month, int) and not isinstance(month, bool) and 1 <= month <= 12


def validate_year(year: int) -> bool:
    """Validate year is within the supported import range (2000-2100)."""
    return isinstance(year, int) and not isinstance(year, bool) and 2000 <= year <= 2100


def first_day_of_month(year: int, month: int) -> date:
    """First calendar day of the given month."""
    return date(year, month, 1)
