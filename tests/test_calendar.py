from datetime import date, datetime, time

import pytest

from tests.conftest import make_reminder
from vaxcare.reminders.calendar_view import build_view, grid_bounds
from vaxcare.reminders.exceptions import ValidationError
from vaxcare.reminders.status import EffectiveStatus

NOW = datetime(2024, 6, 12, 10, 0)


def test_month_grid_is_whole_weeks():
    # June 2024 starts on a Saturday and ends on a Sunday
    start, end = grid_bounds(date(2024, 6, 1), date(2024, 6, 30), "month")
    assert start == date(2024, 5, 26)
    assert end == date(2024, 7, 6)

    view = build_view([], date(2024, 6, 1), date(2024, 6, 30), "month", NOW)
    assert len(view.days) % 7 == 0
    assert len(view.weeks) == 6
    assert all(len(week) == 7 and week[0].date.weekday() == 6 for week in view.weeks)


def test_month_mode_covers_whole_month_of_window_dates():
    start, end = grid_bounds(date(2024, 2, 14), date(2024, 2, 14), "month")
    assert start == date(2024, 1, 28)
    assert end == date(2024, 3, 2)


def test_week_mode_snaps_to_sunday_saturday():
    start, end = grid_bounds(date(2024, 6, 12), date(2024, 6, 13), "week")
    assert (start, end) == (date(2024, 6, 9), date(2024, 6, 15))


@pytest.mark.parametrize(
    "window_start, window_end, mode",
    [
        (date(2024, 6, 30), date(2024, 6, 1), "month"),
        (date(2024, 6, 1), date(2024, 6, 30), "year"),
    ],
)
def test_bad_window_is_rejected(window_start, window_end, mode):
    with pytest.raises(ValidationError):
        grid_bounds(window_start, window_end, mode)


def test_every_reminder_in_window_lands_in_exactly_one_bucket():
    reminders = [
        make_reminder(name=f"r{i}", scheduled_date=d)
        for i, d in enumerate(
            [date(2024, 6, 1), date(2024, 6, 1), date(2024, 6, 15), date(2024, 6, 30), date(2024, 5, 27)]
        )
    ]
    outside = make_reminder(name="far", scheduled_date=date(2024, 9, 1))
    view = build_view(reminders + [outside], date(2024, 6, 1), date(2024, 6, 30), "month", NOW)

    placed = [e.reminder_id for day in view.days for e in day.events]
    assert sorted(placed) == sorted(r.id for r in reminders)
    for day in view.days:
        for event in day.events:
            assert event.date == day.date

    padding = next(day for day in view.days if day.date == date(2024, 5, 27))
    assert padding.in_window is False
    assert padding.events[0].title == "r4"


def test_day_ordering():
    today = NOW.date()
    low_early = make_reminder(name="low early", scheduled_date=today, scheduled_time=time(8, 0), priority="low")
    critical_late = make_reminder(
        name="critical late", scheduled_date=today, scheduled_time=time(17, 0), priority="critical"
    )
    medium_a = make_reminder(name="medium a", scheduled_date=today, scheduled_time=time(9, 0), priority="medium")
    medium_b = make_reminder(name="medium b", scheduled_date=today, scheduled_time=time(7, 0), priority="medium")
    done = make_reminder(
        name="done", scheduled_date=today, scheduled_time=time(6, 0), priority="critical", status="completed"
    )

    view = build_view([done, low_early, medium_a, critical_late, medium_b], today, today, "week", NOW)
    (day,) = [d for d in view.days if d.date == today]

    assert [e.title for e in day.events] == ["critical late", "medium b", "medium a", "low early", "done"]
    assert day.events[0].effective_status == EffectiveStatus.DUE_TODAY
    assert day.events[-1].effective_status == EffectiveStatus.COMPLETED


def test_view_is_repeatable_and_does_not_touch_reminders():
    reminders = [make_reminder(scheduled_date=date(2024, 6, 3)), make_reminder(scheduled_date=date(2024, 6, 20))]
    before = [(r.status, dict(r.dispatched_offsets)) for r in reminders]

    first = build_view(reminders, date(2024, 6, 1), date(2024, 6, 30), "month", NOW)
    second = build_view(reminders, date(2024, 6, 1), date(2024, 6, 30), "month", NOW)

    assert first == second
    assert [(r.status, dict(r.dispatched_offsets)) for r in reminders] == before


def test_booster_flag():
    booster = make_reminder(linked_schedule_id="covid19_adult", dose_index=3, scheduled_date=date(2024, 6, 5))
    primary = make_reminder(linked_schedule_id="covid19_adult", dose_index=1, scheduled_date=date(2024, 6, 5))
    view = build_view([booster, primary], date(2024, 6, 5), date(2024, 6, 5), "week", NOW)
    flags = {e.reminder_id: e.is_booster for d in view.days for e in d.events}
    assert flags == {booster.id: True, primary.id: False}
