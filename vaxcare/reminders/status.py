"""Effective status resolution.

Only terminal states are persisted as truth; every other status is derived from
the scheduled date and the caller's "now" on each read.
"""
from datetime import date, datetime, time
from enum import Enum
from typing import Optional, Union


class ReminderStatus(str, Enum):
    """Status as stored on the reminder record"""
    PENDING = "pending"
    COMPLETED = "completed"
    MISSED = "missed"
    CANCELLED = "cancelled"


class EffectiveStatus(str, Enum):
    """Status as observed right now"""
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"
    DUE_TODAY = "due-today"
    PENDING = "pending"


TERMINAL_STATUSES = frozenset({ReminderStatus.COMPLETED.value, ReminderStatus.CANCELLED.value})
ACTIONABLE_STATUSES = frozenset({EffectiveStatus.OVERDUE, EffectiveStatus.DUE_TODAY})


def _value(status: Union[str, Enum]) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def is_terminal(status: Union[str, Enum]) -> bool:
    return _value(status) in TERMINAL_STATUSES


def effective_status(
    stored_status: Union[str, ReminderStatus],
    scheduled_date: date,
    scheduled_time: Optional[time],
    now: datetime,
) -> EffectiveStatus:
    stored = _value(stored_status)
    if stored in TERMINAL_STATUSES:
        return EffectiveStatus(stored)

    start_of_today = datetime.combine(now.date(), time(0, 0))
    if datetime.combine(scheduled_date, scheduled_time or time(0, 0)) < start_of_today:
        return EffectiveStatus.OVERDUE
    if scheduled_date == now.date():
        return EffectiveStatus.DUE_TODAY
    return EffectiveStatus.PENDING


def resolve(reminder, now: datetime) -> EffectiveStatus:
    """effective_status() for anything shaped like a Reminder."""
    return effective_status(reminder.status, reminder.scheduled_date, reminder.scheduled_time, now)
