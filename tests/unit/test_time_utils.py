"""
Unit Tests for exchange-local time helpers

✅ Timestamps are naive and in the exchange timezone
✅ Trading-calendar date follows the exchange timezone
"""

from datetime import datetime, timedelta

from app.utils.time import LOCAL_TZ, now_local_naive, today_local


def test_now_local_naive_is_naive_exchange_time():
    now = now_local_naive()

    assert now.tzinfo is None
    assert abs(datetime.now(LOCAL_TZ).replace(tzinfo=None) - now) < timedelta(seconds=5)


def test_today_local_uses_exchange_calendar():
    before = datetime.now(LOCAL_TZ).date()
    today = today_local()
    after = datetime.now(LOCAL_TZ).date()

    assert today in (before, after)
