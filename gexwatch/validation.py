"""
Data validation utilities for provider responses
"""

from typing import Any, Optional
from datetime import datetime, date
from gexwatch.utils import get_logger

logger = get_logger(__name__)


def safe_float(
    value: Any,
    default: float = 0.0,
    field_name: str = "value",
    allow_negative: bool = False
) -> float:
    """
    Safely convert value to float with validation

    Args:
        value: Value to convert
        default: Default value if conversion fails
        field_name: Name of field for logging
        allow_negative: Accept negative values (e.g. greeks)

    Returns:
        Float value or default
    """
    if value in (None, "", "N/A"):
        return default

    try:
        result = float(value)

        if result != result:  # NaN
            logger.warning(f"{field_name} is NaN, using default {default}")
            return default

        if result < 0 and not allow_negative:
            logger.warning(f"{field_name} is negative: {result}, using default {default}")
            return default

        return result

    except (ValueError, TypeError) as e:
        logger.warning(f"Failed to convert {field_name}='{value}' to float: {e}, using default {default}")
        return default


def safe_int(value: Any, default: int = 0, field_name: str = "value") -> int:
    """
    Safely convert value to non-negative int

    Args:
        value: Value to convert
        default: Default value if conversion fails
        field_name: Name of field for logging

    Returns:
        Int value or default
    """
    if value in (None, "", "N/A"):
        return default

    try:
        result = int(float(value))

        if result < 0:
            logger.warning(f"{field_name} is negative: {result}, using default {default}")
            return default

        return result

    except (ValueError, TypeError) as e:
        logger.warning(f"Failed to convert {field_name}='{value}' to int: {e}, using default {default}")
        return default


def safe_date(value: Any, default: Optional[date] = None, field_name: str = "date") -> Optional[date]:
    """
    Safely parse a YYYY-MM-DD string (or date/datetime) to a date

    Args:
        value: Date string, date or datetime
        default: Default value if parsing fails
        field_name: Name of field for logging

    Returns:
        date or default
    """
    if not value:
        return default

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()
    except ValueError as e:
        logger.warning(f"Failed to parse {field_name}='{value}': {e}, using default")
        return default
