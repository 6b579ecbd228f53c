"""
Billing calendar

The only place charge dates are computed. Months are advanced on the
(year, month) pair, never by adding days, and billing days are capped at 28
so every month has one.
"""
from datetime import date, datetime, UTC
from typing import Union

MIN_BILLING_DAY = 1
MAX_BILLING_DAY = 28


def clamp_billing_day(day: int) -> int:
    """Clamp a requested billing day into 1..28."""
    return max(MIN_BILLING_DAY, min(MAX_BILLING_DAY, int(day)))


def default_billing_day(today: Union[date, datetime]) -> int:
    """Billing day used when the subscriber does not choose one."""
    return min(today.day, MAX_BILLING_DAY)


def _charge_moment(year: int, month: int, billing_day: int) -> datetime:
    return datetime(year, month, clamp_billing_day(billing_day), tzinfo=UTC)


def next_charge_date(billing_day: int, after: Union[date, datetime]) -> datetime:
    """
    Billing day (00:00 UTC) of the month following `after`'s month

    Examples:
        >>> next_charge_date(15, datetime(2026, 1, 31, tzinfo=UTC))
        datetime.datetime(2026, 2, 15, 0, 0, tzinfo=datetime.timezone.utc)
        >>> next_charge_date(28, datetime(2026, 12, 28, tzinfo=UTC))
        datetime.datetime(2027, 1, 28, 0, 0, tzinfo=datetime.timezone.utc)
    """
    year, month = after.year, after.month + 1
    if month > 12:
        year, month = year + 1, 1
    return _charge_moment(year, month, billing_day)


def initial_charge_date(billing_day: int, today: Union[date, datetime]) -> datetime:
    """
    First charge date of a new subscription

    This month's billing day if it has not passed yet, otherwise the same
    date next_charge_date would produce.
    """
    if today.day <= clamp_billing_day(billing_day):
        return _charge_moment(today.year, today.month, billing_day)
    return next_charge_date(billing_day, today)
