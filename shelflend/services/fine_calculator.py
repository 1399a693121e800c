"""Overdue fine calculation for ShelfLend.

Pure functions mapping a due date, the current date, and the lending rules
to overdue days and a fine amount in integer cents. No state, no I/O.
"""
from datetime import date, datetime

from dateutil.relativedelta import relativedelta

from shelflend.config import DATE_FORMAT_STORAGE

LATE_RETURN_REASON_PREFIX = "late return"


def to_date(value):
    """Normalize a date, datetime, or ISO date string to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value)[:10], DATE_FORMAT_STORAGE).date()


def _to_datetime(value):
    if isinstance(value, datetime):
        return value
    d = to_date(value)
    return datetime(d.year, d.month, d.day)


def date_str(value):
    """Format a date-like value for storage."""
    return to_date(value).strftime(DATE_FORMAT_STORAGE)


def calculate_due_date(loan_date, loan_period_days):
    """Due date for a loan starting on loan_date."""
    return to_date(loan_date) + relativedelta(days=loan_period_days)


def overdue_days(due_date, today, rules):
    """Chargeable days late: max(0, ceil(today - due_date) - grace period).

    Partial days round up. Returns 0 for loans not yet due and loans still
    inside the grace period.

    Args:
        due_date: Due date (date, datetime, or YYYY-MM-DD string).
        today: Current date or datetime.
        rules: LendingRules supplying grace_period_days.

    Returns:
        Non-negative integer number of days.
    """
    due = _to_datetime(due_date)
    now = _to_datetime(today)
    if now <= due:
        return 0
    delta = now - due
    days = delta.days + (1 if (delta.seconds or delta.microseconds) else 0)
    return max(0, days - rules.grace_period_days)


def fine_amount(days, rules):
    """Fine in cents for the given overdue days, capped at max_fine_amount."""
    if days <= 0:
        return 0
    return min(days * rules.fine_per_day, rules.max_fine_amount)


def late_return_reason(days):
    """Fine reason text for a loan the given number of days overdue."""
    return f"{LATE_RETURN_REASON_PREFIX} – {days} days overdue"
