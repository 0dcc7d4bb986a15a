"""Date helpers shared by the circulation models.

Dates are stored as ``YYYY-MM-DD`` text and timestamps as
``YYYY-MM-DD HH:MM:SS`` text, the same layout sqlite sorts correctly.
"""
from datetime import date, datetime
from typing import Union

from library_circulation.errors import ValidationError

DATE_FORMAT = '%Y-%m-%d'
DATETIME_FORMAT = '%Y-%m-%d %H:%M:%S'

DateLike = Union[date, datetime, str]


def parse_timestamp(value: DateLike, field: str = 'date') -> datetime:
    """Parse an ISO date or datetime into a naive local datetime.

    Accepts ``date``/``datetime`` objects, ``YYYY-MM-DD`` strings and ISO
    8601 timestamps (``T`` or space separated, optional ``Z`` or offset).
    Aware timestamps are converted to local time.

    Raises:
        ValidationError: If the value cannot be parsed.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f'Invalid {field} format') from None
    else:
        raise ValidationError(f'Invalid {field} format')

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def parse_date(value: DateLike, field: str = 'date') -> date:
    """Parse a value to calendar-day granularity."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return parse_timestamp(value, field).date()


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def format_timestamp(value: datetime) -> str:
    return value.strftime(DATETIME_FORMAT)


def now_timestamp() -> str:
    return format_timestamp(datetime.now())
