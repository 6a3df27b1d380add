"""Time utilities (exchange-local time)."""

from datetime import date, datetime
from zoneinfo import ZoneInfo

from app.config import settings

LOCAL_TZ = ZoneInfo(settings.TIMEZONE)


def now_local_naive() -> datetime:
    """
    Current time in the exchange timezone, returned as naive datetime.

    Invoices, sessions and audit timestamps are all stored naive in this
    timezone, so comparisons never mix aware and naive values.
    """
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)


def today_local() -> date:
    """Current trading-calendar date in the exchange timezone."""
    return now_local_naive().date()
