"""
Notification scheduling: which (channel, advance-notice) instants a reminder
should fire, and the per-reminder marker that keeps each one at-most-once.
"""
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .status import is_terminal


class MarkerState(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


def marker_key(channel: str, offset_days: int) -> str:
    return f"{channel}:{offset_days}"


@dataclass(frozen=True)
class NotificationDispatch:
    reminder_id: str
    user_id: str
    channel: str
    offset_days: int
    fire_at: datetime

    @property
    def key(self) -> str:
        return marker_key(self.channel, self.offset_days)

    def to_event(self) -> dict:
        return {
            "reminder_id": self.reminder_id,
            "user_id": self.user_id,
            "channel": self.channel,
            "offset_days": self.offset_days,
            "fire_at": self.fire_at.isoformat(),
        }

    @classmethod
    def from_event(cls, event: dict) -> "NotificationDispatch":
        return cls(
            reminder_id=str(event["reminder_id"]),
            user_id=str(event["user_id"]),
            channel=str(event["channel"]),
            offset_days=int(event["offset_days"]),
            fire_at=datetime.fromisoformat(event["fire_at"]),
        )


def fire_at(reminder, offset_days: int) -> datetime:
    return datetime.combine(reminder.scheduled_date - timedelta(days=offset_days), reminder.scheduled_time or time(0, 0))


def all_dispatches(reminder) -> List[NotificationDispatch]:
    """Every configured (channel, offset) instant, ignoring markers and clock."""
    seen = set()
    result = []
    for channel in reminder.notification_channels or []:
        for offset in reminder.advance_notice_days or []:
            key = marker_key(channel, offset)
            if key in seen:
                continue
            seen.add(key)
            result.append(
                NotificationDispatch(
                    reminder_id=reminder.id,
                    user_id=reminder.user_id,
                    channel=channel,
                    offset_days=offset,
                    fire_at=fire_at(reminder, offset),
                )
            )
    return sorted(result, key=lambda d: (d.fire_at, d.channel))


def compute_dispatches(reminder, now: datetime) -> List[NotificationDispatch]:
    """Future dispatches that have not fired yet; none for a resolved reminder."""
    if is_terminal(reminder.status):
        return []
    markers = reminder.dispatched_offsets or {}
    return [d for d in all_dispatches(reminder) if d.fire_at >= now and d.key not in markers]


def due_dispatches(reminder, now: datetime, grace: timedelta) -> List[NotificationDispatch]:
    """Dispatches whose instant has arrived, at most `grace` ago, and not yet claimed."""
    if is_terminal(reminder.status):
        return []
    markers = reminder.dispatched_offsets or {}
    return [
        d for d in all_dispatches(reminder)
        if d.fire_at <= now and now - d.fire_at <= grace and d.key not in markers
    ]


def with_marker(markers: Optional[Dict[str, str]], key: str, state: MarkerState) -> Dict[str, str]:
    # Always a new dict so the ORM sees the JSON column change
    updated = dict(markers or {})
    updated[key] = state.value
    return updated


def cancel_pending(markers: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Turn every queued-but-unsent marker into cancelled."""
    return {
        key: (MarkerState.CANCELLED.value if state == MarkerState.QUEUED.value else state)
        for key, state in (markers or {}).items()
    }


def reschedule_markers(
    markers: Optional[Dict[str, str]],
    channels: Iterable[str],
    offsets: Iterable[int],
    schedule_changed: bool,
) -> Dict[str, str]:
    """Markers to keep after an edit.

    Moving the scheduled date/time makes every notice refer to a new instant,
    so all markers are dropped. Otherwise only pairs that are still configured
    keep their marker.
    """
    if schedule_changed:
        return {}
    configured = {marker_key(c, o) for c in channels for o in offsets}
    return {key: state for key, state in (markers or {}).items() if key in configured}


def is_still_valid(reminder, dispatch: NotificationDispatch) -> bool:
    """True when a queued dispatch still matches the reminder as it is now."""
    if reminder is None or is_terminal(reminder.status):
        return False
    if (reminder.dispatched_offsets or {}).get(dispatch.key) != MarkerState.QUEUED.value:
        return False
    if dispatch.channel not in (reminder.notification_channels or []):
        return False
    if dispatch.offset_days not in (reminder.advance_notice_days or []):
        return False
    return fire_at(reminder, dispatch.offset_days) == dispatch.fire_at


def build_message(reminder) -> Tuple[str, str]:
    title = f"Vaccination Reminder: {reminder.name}"
    at = (reminder.scheduled_time or time(0, 0)).strftime("%H:%M")
    body = f"Your {reminder.name} is scheduled for {reminder.scheduled_date.isoformat()} at {at}"
    return title, body


class NotificationScheduler:
    """Dispatch computation bound to the configured grace window"""

    def __init__(self, grace_seconds: int):
        self.grace = timedelta(seconds=grace_seconds)

    def compute(self, reminder, now: datetime) -> List[NotificationDispatch]:
        return compute_dispatches(reminder, now)

    def due(self, reminder, now: datetime) -> List[NotificationDispatch]:
        return due_dispatches(reminder, now, self.grace)

    def reschedule(self, reminder, schedule_changed: bool) -> None:
        reminder.dispatched_offsets = reschedule_markers(
            reminder.dispatched_offsets,
            reminder.notification_channels or [],
            reminder.advance_notice_days or [],
            schedule_changed,
        )

    def cancel(self, reminder) -> None:
        reminder.dispatched_offsets = cancel_pending(reminder.dispatched_offsets)
