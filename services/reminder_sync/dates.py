"""Due date parsing and validation."""

import re
from datetime import date, datetime

from dateutil import parser as dateutil_parser

from services.reminder_sync.errors import ValidationError

WIRE_DATETIME_FORMAT = "%Y/%m/%d %H:%M:%S"
_SLASHED_FORMATS = ("%Y/%m/%d %H:%M:%S", "%Y/%m/%d")
# isoparse also accepts "2025" and "2025-06"; only hand it complete dates
_FULL_ISO_DATE = re.compile(r"^\d{4}-?\d{2}-?\d{2}(?:$|[T ])")
# Two defaults differing in every date component expose missing fields
_PROBE_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


def parse_due_date(value: str, dayfirst: bool = True) -> datetime:
    """
    Parse a triggering field value into a datetime.

    ISO-8601 is tried first, then the remote's own "YYYY/MM/DD HH:MM:SS",
    then a free-form parse (day-first by default, as entered in the UI).
    Fragments missing a year, month or day ("5", "March", "Monday",
    "12:30") are rejected rather than completed from the current date.

    Raises:
        ValidationError: If the value is not a complete calendar date
    """
    text = (value or "").strip()
    if not text:
        raise ValidationError(value, ValidationError.INVALID_FORMAT)

    if _FULL_ISO_DATE.match(text):
        try:
            return dateutil_parser.isoparse(text)
        except (ValueError, OverflowError):
            pass

    for fmt in _SLASHED_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        first, second = [
            dateutil_parser.parse(text, dayfirst=dayfirst, default=default)
            for default in _PROBE_DEFAULTS
        ]
    except (ValueError, OverflowError):
        raise ValidationError(value, ValidationError.INVALID_FORMAT)

    if first.date() != second.date():
        raise ValidationError(value, ValidationError.INVALID_FORMAT)
    return first


def validate_due_date(value: str, today: date, dayfirst: bool = True) -> date:
    """
    Return the calendar date of a valid due date.

    Today is accepted; anything strictly earlier is rejected.
    """
    due = parse_due_date(value, dayfirst=dayfirst).date()
    if due < today:
        raise ValidationError(value, ValidationError.IN_THE_PAST)
    return due


def format_wire_datetime(moment: datetime) -> str:
    return moment.strftime(WIRE_DATETIME_FORMAT)


def to_wire_midnight(day: date) -> str:
    """Format a date as midnight in the remote's datetime format."""
    return format_wire_datetime(datetime(day.year, day.month, day.day))
