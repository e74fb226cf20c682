"""
Reminder service: the operations exposed to the API and the workers
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from . import repository
from .calendar_view import CalendarView, build_view, grid_bounds
from .config import ReminderSettings, settings as reminder_settings
from .exceptions import ConcurrencyConflict, ReminderNotFound, ScheduleNotFound, ValidationError
from .government import (
    ExpansionDefaults,
    SyncFailure,
    SyncOutcome,
    default_catalogue,
    expand_many,
    fetch_feed,
)
from .metrics import (
    government_reminders_synced_total,
    government_sync_failures_total,
    reminders_completed_total,
    reminders_created_total,
    reminders_deleted_total,
    reminders_dispatch_cancelled_total,
)
from .models import GovernmentVaccineSchedule, Reminder, ReminderCategory, build_reminder
from .notifications import MarkerState, NotificationDispatch, NotificationScheduler
from .recurrence_models import RecurrencePattern, next_occurrence
from .schemas import NotificationSettingsIn, RecurrenceIn, ReminderCreate, ReminderUpdate
from .stats import ReminderStats, compute_stats, is_overdue, is_upcoming
from .status import ReminderStatus, is_terminal
from vaxcare.utils.timezone import now_local

logger = logging.getLogger(__name__)


def _parse_time(value: str) -> time:
    return time.fromisoformat(value)


def _by_schedule(reminder: Reminder):
    return (reminder.scheduled_date, reminder.scheduled_time, reminder.name, reminder.id)


class ReminderService:
    """Create, edit and resolve reminders; read views over a user's reminders"""

    def __init__(
        self,
        db: Session,
        now_fn: Callable[[], datetime] = now_local,
        config: ReminderSettings = reminder_settings,
    ):
        self.db = db
        self.now_fn = now_fn
        self.config = config
        self.scheduler = NotificationScheduler(config.DISPATCH_GRACE_SECONDS)

    # ---------- validation ----------

    @staticmethod
    def _require_name(name: Optional[str]) -> str:
        if name is None or not name.strip():
            raise ValidationError("Reminder name is required")
        return name.strip()

    @staticmethod
    def _pattern(recurrence: Optional[RecurrenceIn]) -> Optional[RecurrencePattern]:
        if recurrence is None:
            return None
        return RecurrencePattern.from_dict(recurrence.model_dump())

    @staticmethod
    def _notification_settings(ns: NotificationSettingsIn) -> Tuple[List[str], List[int]]:
        channels: List[str] = []
        for channel in ns.channels:
            if not channel or not channel.strip():
                raise ValidationError("Notification channel must not be blank")
            if channel.strip() not in channels:
                channels.append(channel.strip())
        offsets: List[int] = []
        for offset in ns.advance_notice_days:
            if offset < 0:
                raise ValidationError(f"Advance notice offsets must be >= 0 days, got {offset}")
            if offset not in offsets:
                offsets.append(offset)
        return channels, offsets

    def _get_owned(self, reminder_id: str, user_id: Optional[str]) -> Reminder:
        reminder = repository.get_reminder(self.db, reminder_id)
        # Another user's reminder is indistinguishable from a missing one
        if reminder is None or (user_id is not None and reminder.user_id != user_id):
            raise ReminderNotFound(reminder_id)
        return reminder

    @staticmethod
    def _check_version(reminder: Reminder, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != reminder.version:
            raise ConcurrencyConflict(
                f"Reminder {reminder.id} is at version {reminder.version}, expected {expected_version}"
            )

    # ---------- writes ----------

    def create_reminder(self, data: ReminderCreate) -> Reminder:
        """Create a custom reminder; missing time/notification settings fall back to defaults."""
        name = self._require_name(data.name)
        if not data.user_id or not data.user_id.strip():
            raise ValidationError("user_id is required")
        pattern = self._pattern(data.recurrence)
        if data.notification_settings is not None:
            channels, offsets = self._notification_settings(data.notification_settings)
        else:
            channels = list(self.config.DEFAULT_CHANNELS)
            offsets = list(self.config.DEFAULT_ADVANCE_NOTICE_DAYS)

        reminder = build_reminder(
            user_id=data.user_id,
            name=name,
            description=data.description or "",
            notes=data.notes,
            category=ReminderCategory.CUSTOM.value,
            priority=data.priority.value,
            scheduled_date=data.scheduled_date,
            scheduled_time=data.scheduled_time or _parse_time(self.config.DEFAULT_REMINDER_TIME),
            recurrence_pattern=pattern.to_dict() if pattern else None,
            notification_channels=channels,
            advance_notice_days=offsets,
        )
        repository.put_reminder(self.db, reminder)
        reminders_created_total.labels(category=reminder.category).inc()
        logger.info(f"[Reminders] Created reminder {reminder.id} for user {reminder.user_id} on {reminder.scheduled_date}")
        return reminder

    def get_reminder(self, reminder_id: str, user_id: Optional[str] = None) -> Reminder:
        return self._get_owned(reminder_id, user_id)

    def update_reminder(self, reminder_id: str, patch: ReminderUpdate, user_id: Optional[str] = None) -> Reminder:
        """Apply a partial edit.

        The whole patch is validated before any field changes, so a rejected
        edit leaves the reminder untouched. Moving the date or time drops every
        dispatch marker; changing channels or offsets keeps markers only for
        pairs that remain configured. A status change routes through the same
        transitions as complete/cancel.
        """
        reminder = self._get_owned(reminder_id, user_id)
        self._check_version(reminder, patch.expected_version)
        fields = patch.model_fields_set

        name = self._require_name(patch.name) if "name" in fields else None
        pattern = self._pattern(patch.recurrence) if "recurrence" in fields else None
        notification = None
        if "notification_settings" in fields and patch.notification_settings is not None:
            notification = self._notification_settings(patch.notification_settings)
        new_status = patch.status if "status" in fields and patch.status is not None else None
        if new_status is not None and new_status.value == reminder.status:
            new_status = None
        if new_status == ReminderStatus.COMPLETED and reminder.status == ReminderStatus.CANCELLED.value:
            raise ValidationError(f"Reminder {reminder.id} is cancelled and cannot be completed")

        if name is not None:
            reminder.name = name
        if "description" in fields and patch.description is not None:
            reminder.description = patch.description
        if "notes" in fields:
            reminder.notes = patch.notes
        if "priority" in fields and patch.priority is not None:
            reminder.priority = patch.priority.value

        schedule_changed = False
        if patch.scheduled_date is not None and patch.scheduled_date != reminder.scheduled_date:
            reminder.scheduled_date = patch.scheduled_date
            schedule_changed = True
        if patch.scheduled_time is not None and patch.scheduled_time != reminder.scheduled_time:
            reminder.scheduled_time = patch.scheduled_time
            schedule_changed = True

        if "recurrence" in fields:
            reminder.recurrence_pattern = pattern.to_dict() if pattern else None
            reminder.is_recurring = pattern is not None

        if notification is not None:
            reminder.notification_channels, reminder.advance_notice_days = notification

        next_instance = None
        if new_status is not None:
            next_instance = self._transition(reminder, new_status, schedule_changed)
        elif not is_terminal(reminder.status):
            self.scheduler.reschedule(reminder, schedule_changed)

        if next_instance is not None:
            self.db.add(next_instance)
        repository.put_reminder(self.db, reminder)
        if next_instance is not None:
            reminders_created_total.labels(category=next_instance.category).inc()
        logger.info(f"[Reminders] Updated reminder {reminder.id} (version {reminder.version})")
        return reminder

    def _transition(self, reminder: Reminder, new_status: ReminderStatus, schedule_changed: bool = False) -> Optional[Reminder]:
        """Move to `new_status`; returns the next recurring instance when one is due."""
        if new_status == ReminderStatus.COMPLETED:
            if reminder.status == ReminderStatus.CANCELLED.value:
                raise ValidationError(f"Reminder {reminder.id} is cancelled and cannot be completed")
            reminder.status = ReminderStatus.COMPLETED.value
            reminder.completed_at = self.now_fn()
            self._cancel_dispatches(reminder)
            reminders_completed_total.inc()
            # Reopening and completing again must not spawn a second follow-up
            if (
                reminder.is_recurring
                and reminder.recurrence_pattern
                and repository.get_next_instance(self.db, reminder.id) is None
            ):
                return self._next_instance(reminder)
            return None

        if new_status == ReminderStatus.CANCELLED:
            reminder.status = ReminderStatus.CANCELLED.value
            self._cancel_dispatches(reminder)
            return None

        # Back to pending/missed: reopened obligations notify again
        reminder.status = new_status.value
        reminder.completed_at = None
        reminder.dispatched_offsets = {
            key: state
            for key, state in (reminder.dispatched_offsets or {}).items()
            if state != MarkerState.CANCELLED.value
        }
        self.scheduler.reschedule(reminder, schedule_changed)
        return None

    def _cancel_dispatches(self, reminder: Reminder) -> None:
        queued = sum(1 for s in (reminder.dispatched_offsets or {}).values() if s == MarkerState.QUEUED.value)
        self.scheduler.cancel(reminder)
        if queued:
            reminders_dispatch_cancelled_total.inc(queued)

    def _next_instance(self, reminder: Reminder) -> Reminder:
        pattern = RecurrencePattern.from_dict(reminder.recurrence_pattern)
        return build_reminder(
            user_id=reminder.user_id,
            name=reminder.name,
            description=reminder.description,
            notes=reminder.notes,
            category=reminder.category,
            priority=reminder.priority,
            scheduled_date=next_occurrence(reminder.scheduled_date, pattern),
            scheduled_time=reminder.scheduled_time,
            recurrence_pattern=dict(reminder.recurrence_pattern),
            parent_reminder_id=reminder.id,
            occurrence_number=(reminder.occurrence_number or 1) + 1,
            notification_channels=list(reminder.notification_channels or []),
            advance_notice_days=list(reminder.advance_notice_days or []),
            government_mandated=reminder.government_mandated,
            linked_schedule_id=reminder.linked_schedule_id,
            dose_index=reminder.dose_index,
        )

    def complete_reminder(
        self,
        reminder_id: str,
        user_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Reminder:
        """Mark completed. Completing an already-completed reminder is a no-op."""
        reminder = self._get_owned(reminder_id, user_id)
        self._check_version(reminder, expected_version)
        if reminder.status == ReminderStatus.COMPLETED.value:
            return reminder
        next_instance = self._transition(reminder, ReminderStatus.COMPLETED)
        if next_instance is not None:
            self.db.add(next_instance)
        repository.put_reminder(self.db, reminder)
        if next_instance is not None:
            reminders_created_total.labels(category=next_instance.category).inc()
            logger.info(
                f"[Reminders] Completed {reminder.id}; next occurrence {next_instance.id} on {next_instance.scheduled_date}"
            )
        else:
            logger.info(f"[Reminders] Completed {reminder.id}")
        return reminder

    def cancel_reminder(
        self,
        reminder_id: str,
        user_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Reminder:
        reminder = self._get_owned(reminder_id, user_id)
        self._check_version(reminder, expected_version)
        if reminder.status == ReminderStatus.CANCELLED.value:
            return reminder
        self._transition(reminder, ReminderStatus.CANCELLED)
        repository.put_reminder(self.db, reminder)
        logger.info(f"[Reminders] Cancelled {reminder.id}")
        return reminder

    def delete_reminder(self, reminder_id: str, user_id: Optional[str] = None) -> None:
        """Remove the reminder; queued dispatches find nothing to send and are dropped."""
        reminder = self._get_owned(reminder_id, user_id)
        repository.delete_reminder(self.db, reminder)
        reminders_deleted_total.inc()
        logger.info(f"[Reminders] Deleted {reminder_id}")

    # ---------- government schedules ----------

    def _expansion_defaults(self) -> ExpansionDefaults:
        return ExpansionDefaults(
            scheduled_time=_parse_time(self.config.GOVERNMENT_REMINDER_TIME),
            channels=tuple(self.config.GOVERNMENT_CHANNELS),
            advance_notice_days=tuple(self.config.GOVERNMENT_ADVANCE_NOTICE_DAYS),
        )

    def sync_government_schedules(
        self,
        user_id: str,
        schedule_ids: Iterable[str],
        reference_date: Optional[date] = None,
        skip_existing: bool = False,
    ) -> SyncOutcome:
        """Expand the selected schedules into reminders for `user_id`.

        Additive by default: syncing twice creates a second set. With
        `skip_existing`, a dose already present for (user, schedule, dose)
        is not created again. Unknown or malformed schedules are reported in
        `failed` without affecting the rest of the batch.
        """
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")
        reference_date = reference_date or self.now_fn().date()

        found = []
        missing: List[SyncFailure] = []
        # A schedule listed twice in one request is expanded once
        for schedule_id in dict.fromkeys(schedule_ids):
            schedule = repository.get_government_schedule(self.db, schedule_id)
            if schedule is None:
                missing.append(SyncFailure(schedule_id=schedule_id, reason=str(ScheduleNotFound(schedule_id))))
                continue
            found.append(schedule)

        outcome = expand_many(found, user_id, reference_date, self._expansion_defaults())
        outcome.failed = missing + outcome.failed

        if skip_existing:
            outcome.created = [
                r for r in outcome.created
                if repository.find_schedule_dose(self.db, user_id, r.linked_schedule_id, r.dose_index) is None
            ]

        repository.put_reminders(self.db, outcome.created)

        if outcome.created:
            government_reminders_synced_total.inc(len(outcome.created))
            reminders_created_total.labels(category=ReminderCategory.GOVERNMENT_MANDATED.value).inc(len(outcome.created))
        if outcome.failed:
            government_sync_failures_total.inc(len(outcome.failed))
        logger.info(
            f"[GovSync] User {user_id}: created {len(outcome.created)} reminders, {len(outcome.failed)} schedules failed"
        )
        return outcome

    def list_government_schedules(self) -> List[GovernmentVaccineSchedule]:
        return repository.list_government_schedules(self.db)

    def refresh_government_schedules(self, feed_url: Optional[str] = None) -> int:
        """Replace the reference schedules from the feed, or the built-in catalogue without one."""
        feed_url = feed_url or self.config.GOVERNMENT_FEED_URL
        if feed_url:
            schedules = fetch_feed(feed_url, timeout=self.config.GOVERNMENT_FEED_TIMEOUT_SECONDS)
            if not schedules:
                logger.warning(f"[GovSync] Feed {feed_url} returned no usable schedules; keeping current data")
                return 0
        else:
            schedules = default_catalogue()
        count = repository.replace_government_schedules(self.db, schedules)
        logger.info(f"[GovSync] Loaded {count} government schedules")
        return count

    def ensure_government_catalogue(self) -> int:
        """Seed the built-in catalogue into an empty table."""
        if repository.count_government_schedules(self.db):
            return 0
        return repository.replace_government_schedules(self.db, default_catalogue())

    # ---------- reads ----------

    def get_calendar_view(
        self,
        user_id: str,
        window_start: date,
        window_end: date,
        mode: str = "month",
    ) -> CalendarView:
        grid_start, grid_end = grid_bounds(window_start, window_end, mode)
        reminders = repository.get_reminders_in_range(self.db, user_id, grid_start, grid_end)
        return build_view(reminders, window_start, window_end, mode, self.now_fn())

    def get_stats(self, user_id: str) -> ReminderStats:
        reminders = repository.get_user_reminders(self.db, user_id)
        return compute_stats(reminders, self.now_fn(), self.config.UPCOMING_WINDOW_DAYS)

    def get_upcoming(self, user_id: str, days: Optional[int] = None) -> List[Reminder]:
        days = self.config.UPCOMING_WINDOW_DAYS if days is None else days
        if days < 0:
            raise ValidationError(f"days must be >= 0, got {days}")
        now = self.now_fn()
        reminders = repository.get_reminders_in_range(self.db, user_id, now.date(), now.date() + timedelta(days=days))
        return sorted((r for r in reminders if is_upcoming(r, now, days)), key=_by_schedule)

    def get_overdue(self, user_id: str) -> List[Reminder]:
        now = self.now_fn()
        reminders = repository.get_reminders_in_range(self.db, user_id, date.min, now.date())
        return sorted((r for r in reminders if is_overdue(r, now)), key=_by_schedule)

    def search_reminders(self, user_id: str, query: str, limit: int = 100) -> List[Reminder]:
        if not query or not query.strip():
            raise ValidationError("Search query must not be empty")
        return repository.search_reminders(self.db, user_id, query, limit=limit)

    def list_reminders(
        self,
        user_id: str,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Reminder]:
        if start and end and end < start:
            raise ValidationError(f"Date range ends before it starts: {start} > {end}")
        return repository.list_reminders(
            self.db, user_id, status=status, priority=priority, start=start, end=end, limit=limit, offset=offset
        )

    def compute_dispatches(self, reminder_id: str, user_id: Optional[str] = None) -> List[NotificationDispatch]:
        reminder = self._get_owned(reminder_id, user_id)
        return self.scheduler.compute(reminder, self.now_fn())

    def register_channel_address(self, user_id: str, channel: str, address: str):
        if not address or not address.strip():
            raise ValidationError(f"{channel} address must not be empty")
        entry = repository.upsert_channel_address(self.db, user_id, channel, address.strip())
        logger.info(f"[Reminders] Registered {channel} address for user {user_id}")
        return entry
