from datetime import date, datetime, time

import pytest

from vaxcare.reminders.status import EffectiveStatus, ReminderStatus, effective_status

NOON = time(12, 0)


@pytest.mark.parametrize("stored", [ReminderStatus.COMPLETED, ReminderStatus.CANCELLED])
@pytest.mark.parametrize(
    "now",
    [datetime(2020, 1, 1), datetime(2024, 3, 10, 12, 0), datetime(2030, 12, 31, 23, 59)],
)
def test_terminal_status_is_sticky(stored, now):
    assert effective_status(stored, date(2024, 3, 10), NOON, now).value == stored.value


def test_past_pending_reminder_is_overdue():
    now = datetime(2024, 3, 15, 9, 0)
    assert effective_status("pending", date(2024, 3, 10), NOON, now) == EffectiveStatus.OVERDUE


def test_late_yesterday_is_overdue():
    now = datetime(2024, 3, 15, 0, 1)
    assert effective_status("pending", date(2024, 3, 14), time(23, 59), now) == EffectiveStatus.OVERDUE


def test_same_day_is_due_today_even_after_the_time_passed():
    now = datetime(2024, 3, 15, 18, 0)
    assert effective_status("pending", date(2024, 3, 15), time(8, 0), now) == EffectiveStatus.DUE_TODAY


def test_future_is_pending():
    now = datetime(2024, 3, 15, 18, 0)
    assert effective_status("pending", date(2024, 3, 16), time(0, 0), now) == EffectiveStatus.PENDING


def test_missed_is_recomputed_from_date():
    now = datetime(2024, 3, 15, 9, 0)
    assert effective_status(ReminderStatus.MISSED, date(2024, 3, 1), NOON, now) == EffectiveStatus.OVERDUE
    assert effective_status(ReminderStatus.MISSED, date(2024, 4, 1), NOON, now) == EffectiveStatus.PENDING
