"""Reminder counts for the dashboard."""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, List

from .status import EffectiveStatus, ReminderStatus, resolve

UPCOMING_WINDOW_DAYS = 30


@dataclass
class ReminderStats:
    total: int
    upcoming: int
    overdue: int
    completed_this_period: int


def is_upcoming(reminder, now: datetime, days: int = UPCOMING_WINDOW_DAYS) -> bool:
    """Pending or due today, dated within [today, today + days]."""
    today = now.date()
    if resolve(reminder, now) not in (EffectiveStatus.PENDING, EffectiveStatus.DUE_TODAY):
        return False
    return today <= reminder.scheduled_date <= today + timedelta(days=days)


def is_overdue(reminder, now: datetime) -> bool:
    return resolve(reminder, now) == EffectiveStatus.OVERDUE


def completed_in_month(reminder, month_of: date) -> bool:
    # Counted by when the completion happened, not when it was scheduled
    if reminder.status != ReminderStatus.COMPLETED.value or reminder.completed_at is None:
        return False
    return (reminder.completed_at.year, reminder.completed_at.month) == (month_of.year, month_of.month)


def compute_stats(reminders: Iterable, now: datetime, upcoming_days: int = UPCOMING_WINDOW_DAYS) -> ReminderStats:
    items: List = list(reminders)
    return ReminderStats(
        total=len(items),
        upcoming=sum(1 for r in items if is_upcoming(r, now, upcoming_days)),
        overdue=sum(1 for r in items if is_overdue(r, now)),
        completed_this_period=sum(1 for r in items if completed_in_month(r, now.date())),
    )
