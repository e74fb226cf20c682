from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .exceptions import ConcurrencyConflict
from .models import ChannelAddress, GovernmentVaccineSchedule, Reminder
from .notifications import MarkerState, with_marker
from .status import TERMINAL_STATUSES, is_terminal


def put_reminder(db: Session, reminder: Reminder) -> Reminder:
    """Insert or update; a stale version surfaces as ConcurrencyConflict."""
    db.add(reminder)
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConcurrencyConflict(f"Reminder {reminder.id} was modified concurrently") from exc
    db.refresh(reminder)
    return reminder


def put_reminders(db: Session, reminders: Iterable[Reminder]) -> List[Reminder]:
    items = list(reminders)
    db.add_all(items)
    db.commit()
    for r in items:
        db.refresh(r)
    return items


def get_reminder(db: Session, reminder_id: str) -> Optional[Reminder]:
    return db.get(Reminder, reminder_id)


def delete_reminder(db: Session, reminder: Reminder) -> None:
    db.delete(reminder)
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConcurrencyConflict(f"Reminder {reminder.id} was modified concurrently") from exc


def get_user_reminders(db: Session, user_id: str) -> List[Reminder]:
    stmt = (
        select(Reminder)
        .where(Reminder.user_id == user_id)
        .order_by(Reminder.scheduled_date.asc(), Reminder.scheduled_time.asc())
    )
    return list(db.execute(stmt).scalars())


def list_reminders(
    db: Session,
    user_id: str,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Reminder]:
    stmt = select(Reminder).where(Reminder.user_id == user_id)
    if status:
        stmt = stmt.where(Reminder.status == status)
    if priority:
        stmt = stmt.where(Reminder.priority == priority)
    if start:
        stmt = stmt.where(Reminder.scheduled_date >= start)
    if end:
        stmt = stmt.where(Reminder.scheduled_date <= end)
    stmt = (
        stmt.order_by(Reminder.scheduled_date.asc(), Reminder.scheduled_time.asc())
        .offset(offset)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def get_reminders_in_range(db: Session, user_id: str, start: date, end: date) -> List[Reminder]:
    return list_reminders(db, user_id, start=start, end=end, limit=10_000)


def search_reminders(db: Session, user_id: str, query: str, limit: int = 100) -> List[Reminder]:
    pattern = f"%{query.strip()}%"
    stmt = (
        select(Reminder)
        .where(Reminder.user_id == user_id)
        .where(
            or_(
                Reminder.name.ilike(pattern),
                Reminder.description.ilike(pattern),
                Reminder.notes.ilike(pattern),
            )
        )
        .order_by(Reminder.scheduled_date.asc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def find_schedule_dose(db: Session, user_id: str, schedule_id: str, dose_index: int) -> Optional[Reminder]:
    stmt = (
        select(Reminder)
        .where(Reminder.user_id == user_id)
        .where(Reminder.linked_schedule_id == schedule_id)
        .where(Reminder.dose_index == dose_index)
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def get_dispatch_candidates(db: Session, since: date, limit: int = 1000, offset: int = 0) -> List[Reminder]:
    """Unresolved reminders whose scheduled date has not long passed."""
    stmt = (
        select(Reminder)
        .where(Reminder.status.not_in(sorted(TERMINAL_STATUSES)))
        .where(Reminder.scheduled_date >= since)
        .order_by(Reminder.scheduled_date.asc(), Reminder.id.asc())
        .offset(offset)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def claim_dispatch(db: Session, reminder_id: str, key: str) -> bool:
    """Mark (channel, offset) queued unless any marker already exists or the reminder is resolved.

    The version column turns a concurrent claim into a StaleDataError, so two
    scanners can never both queue the same pair.
    """
    reminder = db.get(Reminder, reminder_id)
    if reminder is None or is_terminal(reminder.status):
        return False
    if key in (reminder.dispatched_offsets or {}):
        return False
    reminder.dispatched_offsets = with_marker(reminder.dispatched_offsets, key, MarkerState.QUEUED)
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        return False
    return True


def set_marker(
    db: Session,
    reminder_id: str,
    key: str,
    state: MarkerState,
    expected: Optional[MarkerState] = MarkerState.QUEUED,
) -> bool:
    reminder = db.get(Reminder, reminder_id)
    if reminder is None:
        return False
    current = (reminder.dispatched_offsets or {}).get(key)
    if expected is not None and current != expected.value:
        return False
    reminder.dispatched_offsets = with_marker(reminder.dispatched_offsets, key, state)
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        return False
    return True


def upsert_channel_address(db: Session, user_id: str, channel: str, address: str) -> ChannelAddress:
    existing = (
        db.query(ChannelAddress)
        .filter(ChannelAddress.user_id == user_id, ChannelAddress.channel == channel)
        .first()
    )
    if existing:
        existing.address = address
        db.add(existing)
        db.commit()
        db.refresh(existing)
        return existing
    entry = ChannelAddress(user_id=user_id, channel=channel, address=address)
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def get_channel_address(db: Session, user_id: str, channel: str) -> Optional[str]:
    entry = (
        db.query(ChannelAddress)
        .filter(ChannelAddress.user_id == user_id, ChannelAddress.channel == channel)
        .first()
    )
    return entry.address if entry else None


def list_government_schedules(db: Session) -> List[GovernmentVaccineSchedule]:
    stmt = select(GovernmentVaccineSchedule).order_by(GovernmentVaccineSchedule.vaccine_name.asc())
    return list(db.execute(stmt).scalars())


def get_government_schedule(db: Session, schedule_id: str) -> Optional[GovernmentVaccineSchedule]:
    return db.get(GovernmentVaccineSchedule, schedule_id)


def replace_government_schedules(db: Session, schedules: Iterable[GovernmentVaccineSchedule]) -> int:
    """Swap the reference data wholesale in one transaction."""
    items = list(schedules)
    for existing in db.query(GovernmentVaccineSchedule).all():
        db.delete(existing)
    db.flush()
    db.add_all(items)
    db.commit()
    return len(items)


def get_next_instance(db: Session, parent_reminder_id: str) -> Optional[Reminder]:
    stmt = select(Reminder).where(Reminder.parent_reminder_id == parent_reminder_id).limit(1)
    return db.execute(stmt).scalars().first()


def count_government_schedules(db: Session) -> int:
    return db.query(GovernmentVaccineSchedule).count()
