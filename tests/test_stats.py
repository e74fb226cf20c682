from datetime import date, datetime

from tests.conftest import make_reminder
from vaxcare.reminders.stats import compute_stats, is_upcoming

NOW = datetime(2024, 6, 15, 10, 0)


def test_compute_stats():
    reminders = [
        make_reminder(scheduled_date=date(2024, 6, 20)),
        make_reminder(scheduled_date=date(2024, 7, 20)),
        make_reminder(scheduled_date=date(2024, 6, 15)),
        make_reminder(scheduled_date=date(2024, 6, 1)),
        make_reminder(scheduled_date=date(2024, 5, 1), status="completed", completed_at=datetime(2024, 6, 2, 9, 0)),
        make_reminder(scheduled_date=date(2024, 6, 10), status="completed", completed_at=datetime(2024, 5, 30, 9, 0)),
        make_reminder(scheduled_date=date(2024, 6, 18), status="cancelled"),
    ]
    stats = compute_stats(reminders, NOW)

    assert stats.total == 7
    assert stats.upcoming == 2
    assert stats.overdue == 1
    # Counted by completion time: the late completion of a May reminder counts in June
    assert stats.completed_this_period == 1


def test_upcoming_window_is_inclusive():
    assert is_upcoming(make_reminder(scheduled_date=date(2024, 7, 15)), NOW, 30)
    assert not is_upcoming(make_reminder(scheduled_date=date(2024, 7, 16)), NOW, 30)
    assert is_upcoming(make_reminder(scheduled_date=date(2024, 6, 15)), NOW, 0)


def test_empty():
    stats = compute_stats([], NOW)
    assert (stats.total, stats.upcoming, stats.overdue, stats.completed_this_period) == (0, 0, 0, 0)
