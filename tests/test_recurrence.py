from datetime import date

import pytest

from vaxcare.reminders.exceptions import NoRecurrence, ValidationError
from vaxcare.reminders.recurrence_models import (
    CommonPatterns,
    RecurrencePattern,
    RecurrenceType,
    next_occurrence,
)


@pytest.mark.parametrize(
    "anchor, expected",
    [
        (date(2023, 1, 31), date(2023, 2, 28)),
        (date(2024, 1, 31), date(2024, 2, 29)),
        (date(2024, 3, 31), date(2024, 4, 30)),
        (date(2024, 1, 15), date(2024, 2, 15)),
    ],
)
def test_monthly_clamps_to_last_day_of_month(anchor, expected):
    assert next_occurrence(anchor, RecurrencePattern(RecurrenceType.MONTHLY)) == expected


def test_yearly_from_leap_day_clamps_to_feb_28():
    assert next_occurrence(date(2024, 2, 29), CommonPatterns.yearly()) == date(2025, 2, 28)


def test_day_and_week_steps_are_exact():
    anchor = date(2024, 2, 27)
    assert next_occurrence(anchor, RecurrencePattern(RecurrenceType.DAILY, 3)) == date(2024, 3, 1)
    assert next_occurrence(anchor, RecurrencePattern(RecurrenceType.WEEKLY, 2)) == date(2024, 3, 12)


def test_interval_multiplies_month_step():
    assert next_occurrence(date(2024, 8, 31), RecurrencePattern(RecurrenceType.MONTHLY, 6)) == date(2025, 2, 28)


@pytest.mark.parametrize("kind", list(RecurrenceType))
@pytest.mark.parametrize("anchor", [date(2024, 1, 31), date(2024, 2, 29), date(2023, 12, 31)])
def test_repeated_steps_never_go_backwards(kind, anchor):
    pattern = RecurrencePattern(kind, 1)
    previous = anchor
    for _ in range(30):
        current = next_occurrence(previous, pattern)
        assert current > previous
        previous = current


def test_no_rule_raises_no_recurrence():
    with pytest.raises(NoRecurrence):
        next_occurrence(date(2024, 1, 1), None)


@pytest.mark.parametrize("interval", [0, -1])
def test_interval_must_be_positive(interval):
    with pytest.raises(ValidationError):
        RecurrencePattern(RecurrenceType.DAILY, interval)


def test_from_dict():
    assert RecurrencePattern.from_dict(None) is None
    assert RecurrencePattern.from_dict({"type": "none"}) is None
    assert RecurrencePattern.from_dict({"type": "yearly", "interval": 1}) == CommonPatterns.yearly()
    with pytest.raises(ValidationError):
        RecurrencePattern.from_dict({"type": "hourly"})
