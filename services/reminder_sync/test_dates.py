"""Unit tests for due date parsing and validation."""

from datetime import date, datetime

import pytest

from services.reminder_sync.dates import (
    parse_due_date,
    to_wire_midnight,
    validate_due_date,
)
from services.reminder_sync.errors import ValidationError

TODAY = date(2025, 6, 1)


class TestParseDueDate:

    def test_iso_date_and_datetime(self):
        assert parse_due_date("2025-12-25") == datetime(2025, 12, 25)
        assert parse_due_date("2025-06-01T10:30:00") == datetime(2025, 6, 1, 10, 30)

    def test_remote_slashed_format(self):
        assert parse_due_date("2025/06/01 00:00:00") == datetime(2025, 6, 1)
        assert parse_due_date("2025/06/01") == datetime(2025, 6, 1)

    def test_free_form_is_day_first(self):
        assert parse_due_date("01/06/2025").date() == date(2025, 6, 1)
        assert parse_due_date("25 Dec 2025").date() == date(2025, 12, 25)
        assert parse_due_date("25/12/2025 14:00").date() == date(2025, 12, 25)

    def test_month_first_when_configured(self):
        assert parse_due_date("01/06/2025", dayfirst=False).date() == date(2025, 1, 6)

    @pytest.mark.parametrize("value", [
        "", "   ", "not a date", "2025-02-30",
        "5", "March", "Monday", "12:30", "2025", "2025-06", "March 2026"
    ])
    def test_unparseable_values_are_invalid_format(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_due_date(value)
        assert exc_info.value.reason == ValidationError.INVALID_FORMAT


class TestValidateDueDate:

    def test_today_is_accepted_regardless_of_time(self):
        assert validate_due_date("2025-06-01T23:59:00", TODAY) == TODAY
        assert validate_due_date("2025-06-01T00:00:00", TODAY) == TODAY

    def test_yesterday_is_rejected_as_past(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_due_date("2025-05-31", TODAY)
        assert exc_info.value.reason == ValidationError.IN_THE_PAST

    def test_future_date(self):
        assert validate_due_date("2025-12-25", TODAY) == date(2025, 12, 25)


class TestWireFormat:

    def test_midnight_formatting(self):
        assert to_wire_midnight(date(2025, 12, 25)) == "2025/12/25 00:00:00"
