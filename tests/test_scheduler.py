"""Tests for due date computation."""
from datetime import date, datetime

import pytest
import pytz

from floorcheck.exceptions import SchedulingError
from floorcheck.scheduler import compute_due_date, parse_frequency
from floorcheck.schema import Frequency


def test_month_end_clamps_in_leap_year():
    assert compute_due_date("monthly", date(2024, 1, 31)) == date(2024, 2, 29)


def test_month_end_clamps_in_common_year():
    assert compute_due_date("monthly", date(2023, 1, 31)) == date(2023, 2, 28)


def test_weekly_keeps_time_of_day():
    start = datetime(2024, 3, 1, 9, 0, tzinfo=pytz.utc)
    assert compute_due_date(Frequency.WEEKLY, start) == datetime(2024, 3, 8, 9, 0, tzinfo=pytz.utc)


@pytest.mark.parametrize("frequency,reference,expected", [
    ("daily", date(2024, 12, 31), date(2025, 1, 1)),
    ("monthly", date(2024, 12, 15), date(2025, 1, 15)),
    ("quarterly", date(2024, 11, 30), date(2025, 2, 28)),
    ("quarterly", date(2024, 1, 31), date(2024, 4, 30)),
    ("annually", date(2024, 2, 29), date(2025, 2, 28)),
    ("annually", date(2023, 6, 1), date(2024, 6, 1)),
])
def test_calendar_arithmetic(frequency, reference, expected):
    assert compute_due_date(frequency, reference) == expected


@pytest.mark.parametrize("frequency", [None, "", "once", Frequency.ONCE])
def test_unscheduled_frequencies_have_no_due_date(frequency):
    assert compute_due_date(frequency, date(2024, 1, 1)) is None


def test_unknown_frequency_raises():
    with pytest.raises(SchedulingError):
        compute_due_date("fortnightly", date(2024, 1, 1))
    with pytest.raises(SchedulingError):
        parse_frequency("hourly")


def test_parse_frequency_is_case_insensitive():
    assert parse_frequency(" Weekly ") == Frequency.WEEKLY
