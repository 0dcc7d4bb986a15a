"""Late-return fine calculation.

Fines are a pure function of a due date and a reference date, both
truncated to calendar days.  Nothing here touches the database; the
transaction model stores whatever this module returns.
"""
from datetime import date, datetime
from typing import Optional, Union

from flask import current_app, has_app_context

DEFAULT_FINE_PER_DAY: int = 1000

DayLike = Union[date, datetime]


def _as_day(value: DayLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def fine_rate() -> int:
    """Return the configured daily fine, falling back to the default."""
    if has_app_context():
        return int(current_app.config.get('FINE_PER_DAY', DEFAULT_FINE_PER_DAY))
    return DEFAULT_FINE_PER_DAY


def days_late(due_date: DayLike, reference_date: DayLike) -> int:
    """Count full days between the due date and the reference date.

    Returns:
        Positive number of days when late, zero or negative otherwise.
    """
    return (_as_day(reference_date) - _as_day(due_date)).days


def calculate_fine(due_date: DayLike, reference_date: DayLike,
                   rate: Optional[int] = None) -> int:
    """Calculate the fine owed for a book due on ``due_date``.

    Args:
        due_date: Date the book had to be back.
        reference_date: Return date, or today for books still out.
        rate: Fine per day late. Defaults to the ``FINE_PER_DAY`` setting.

    Returns:
        ``days_late * rate``, or 0 when returned on or before the due date.
    """
    late = days_late(due_date, reference_date)
    if late <= 0:
        return 0
    if rate is None:
        rate = fine_rate()
    return late * rate
