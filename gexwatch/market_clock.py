"""
Market clock for US equity options

Regular session only: Monday-Friday, 09:30 to 16:00 America/New_York,
close exclusive. Holidays are not modeled.
"""

from datetime import datetime, date, time as dtime
from typing import Optional
import pytz

from gexwatch.utils import get_logger

logger = get_logger(__name__)

EXCHANGE_TZ = "America/New_York"

REGULAR_OPEN = dtime(9, 30)
REGULAR_CLOSE = dtime(16, 0)
PRE_MARKET_START = dtime(4, 0)
AFTER_HOURS_END = dtime(20, 0)


def _to_exchange_time(now: Optional[datetime], tz_name: str) -> Optional[datetime]:
    """Convert to exchange local time, or None if the timezone cannot be loaded"""
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        logger.error(f"Cannot load timezone '{tz_name}', treating market as closed")
        return None

    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        # Naive datetimes are UTC
        now = pytz.UTC.localize(now)
    return now.astimezone(tz)


def is_market_open(now: Optional[datetime] = None, tz_name: str = EXCHANGE_TZ) -> bool:
    """
    Check if the regular session is open

    Args:
        now: Instant to check (default: current time). Naive values are UTC.
        tz_name: Exchange timezone name

    Returns:
        True between 09:30 (inclusive) and 16:00 (exclusive) on weekdays.
        False if the exchange timezone cannot be loaded.
    """
    local = _to_exchange_time(now, tz_name)
    if local is None:
        return False

    # Monday=0, Sunday=6
    if local.weekday() > 4:
        return False

    return REGULAR_OPEN <= local.time() < REGULAR_CLOSE


def get_market_session(now: Optional[datetime] = None, tz_name: str = EXCHANGE_TZ) -> str:
    """
    Get current market session

    Returns:
        Session string: 'pre-market', 'regular', 'after-hours', 'closed'
    """
    local = _to_exchange_time(now, tz_name)
    if local is None or local.weekday() > 4:
        return "closed"

    current_time = local.time()

    if current_time < PRE_MARKET_START:
        return "closed"
    elif current_time < REGULAR_OPEN:
        return "pre-market"
    elif current_time < REGULAR_CLOSE:
        return "regular"
    elif current_time < AFTER_HOURS_END:
        return "after-hours"
    else:
        return "closed"


def expiry_close(expiry_date: date, tz_name: str = EXCHANGE_TZ) -> datetime:
    """Moment an option expiring on expiry_date stops trading (16:00 exchange time)"""
    tz = pytz.timezone(tz_name)
    return tz.localize(datetime.combine(expiry_date, REGULAR_CLOSE))
