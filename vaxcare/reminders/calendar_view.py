"""Calendar projection of reminders.

Pure read-side aggregation: nothing here touches the database or mutates a
reminder, so the same inputs always give the same grid.
"""
from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Literal

from .exceptions import ValidationError
from .models import PRIORITY_RANK
from .status import ACTIONABLE_STATUSES, EffectiveStatus, resolve

CalendarMode = Literal["month", "week"]

# Grid rows run Sunday..Saturday
WEEK_START = 6  # date.weekday() of Sunday


@dataclass
class CalendarEvent:
    reminder_id: str
    title: str
    date: date
    time: time
    priority: str
    effective_status: EffectiveStatus
    government_mandated: bool
    is_booster: bool
    reminder: Any = field(repr=False, compare=False, default=None)


@dataclass
class CalendarDay:
    date: date
    in_window: bool
    events: List[CalendarEvent] = field(default_factory=list)


@dataclass
class CalendarView:
    mode: str
    window_start: date
    window_end: date
    grid_start: date
    grid_end: date
    days: List[CalendarDay]

    @property
    def weeks(self) -> List[List[CalendarDay]]:
        return [self.days[i:i + 7] for i in range(0, len(self.days), 7)]


def start_of_week(day: date) -> date:
    return day - timedelta(days=(day.weekday() - WEEK_START) % 7)


def end_of_week(day: date) -> date:
    return start_of_week(day) + timedelta(days=6)


def grid_bounds(window_start: date, window_end: date, mode: str) -> tuple[date, date]:
    if window_end < window_start:
        raise ValidationError(f"Calendar window ends before it starts: {window_start} > {window_end}")
    if mode == "month":
        first = window_start.replace(day=1)
        last = window_end.replace(day=monthrange(window_end.year, window_end.month)[1])
        return start_of_week(first), end_of_week(last)
    if mode == "week":
        return start_of_week(window_start), end_of_week(window_end)
    raise ValidationError(f"Unknown calendar mode: {mode!r}")


def _sort_key(event: CalendarEvent):
    if event.effective_status in ACTIONABLE_STATUSES:
        urgency = 0
    elif event.effective_status == EffectiveStatus.PENDING:
        urgency = 1
    else:
        urgency = 2
    return (urgency, PRIORITY_RANK.get(event.priority, len(PRIORITY_RANK)), event.time, event.title, event.reminder_id)


def to_event(reminder, now: datetime) -> CalendarEvent:
    return CalendarEvent(
        reminder_id=reminder.id,
        title=reminder.name,
        date=reminder.scheduled_date,
        time=reminder.scheduled_time or time(0, 0),
        priority=reminder.priority,
        effective_status=resolve(reminder, now),
        government_mandated=bool(reminder.government_mandated),
        is_booster=bool(reminder.linked_schedule_id and (reminder.dose_index or 0) > 1),
        reminder=reminder,
    )


def build_view(
    reminders: Iterable,
    window_start: date,
    window_end: date,
    mode: CalendarMode,
    now: datetime,
) -> CalendarView:
    grid_start, grid_end = grid_bounds(window_start, window_end, mode)

    buckets: Dict[date, List[CalendarEvent]] = {}
    for reminder in reminders:
        if grid_start <= reminder.scheduled_date <= grid_end:
            buckets.setdefault(reminder.scheduled_date, []).append(to_event(reminder, now))

    days = []
    current = grid_start
    while current <= grid_end:
        events = sorted(buckets.get(current, []), key=_sort_key)
        days.append(CalendarDay(date=current, in_window=window_start <= current <= window_end, events=events))
        current += timedelta(days=1)

    return CalendarView(
        mode=mode,
        window_start=window_start,
        window_end=window_end,
        grid_start=grid_start,
        grid_end=grid_end,
        days=days,
    )
