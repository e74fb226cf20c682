"""
Reminder models - one table for one-time reminders and recurring instances
"""
from datetime import datetime
from enum import Enum
import uuid

from sqlalchemy import Column, String, Date, Time, DateTime, Boolean, Integer, Text, JSON, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB

from vaxcare.db.base import Base
from vaxcare.utils.timezone import now_local


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Lower rank sorts first
PRIORITY_RANK = {
    Priority.CRITICAL.value: 0,
    Priority.HIGH.value: 1,
    Priority.MEDIUM.value: 2,
    Priority.LOW.value: 3,
}


class ReminderCategory(str, Enum):
    CUSTOM = "custom"
    GOVERNMENT_MANDATED = "government-mandated"


def _new_id() -> str:
    return str(uuid.uuid4())


class Reminder(Base):
    """A scheduled health obligation owned by exactly one user"""
    __tablename__ = "vaccination_reminders"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=True)
    category = Column(String, nullable=False, default=ReminderCategory.CUSTOM.value)
    priority = Column(String, nullable=False, default=Priority.MEDIUM.value)
    status = Column(String, nullable=False, default="pending")

    # When the obligation falls due (local wall-clock)
    scheduled_date = Column(Date, nullable=False)
    scheduled_time = Column(Time, nullable=False)

    # Recurrence ({"type": "yearly", "interval": 1}; NULL for one-time reminders)
    recurrence_pattern = Column(JSONType, nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    parent_reminder_id = Column(String(36), nullable=True)  # previous instance of a recurring chain
    occurrence_number = Column(Integer, nullable=False, default=1)

    # Notification settings
    notification_channels = Column(JSONType, nullable=False, default=list)
    advance_notice_days = Column(JSONType, nullable=False, default=list)
    # "channel:offset" -> queued | sent | failed | cancelled
    dispatched_offsets = Column(JSONType, nullable=False, default=dict)

    # Government schedule provenance
    government_mandated = Column(Boolean, nullable=False, default=False)
    linked_schedule_id = Column(String, nullable=True)
    dose_index = Column(Integer, nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=now_local, nullable=False)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_vaccination_reminders_user_date", "user_id", "scheduled_date"),
        Index("ix_vaccination_reminders_status_date", "status", "scheduled_date"),
        Index("ix_vaccination_reminders_schedule", "user_id", "linked_schedule_id", "dose_index"),
    )

    def __repr__(self) -> str:
        return f"<Reminder {self.id} {self.name!r} {self.scheduled_date} {self.status}>"


class GovernmentVaccineSchedule(Base):
    """Reference schedule from the government feed; replaced wholesale on refresh"""
    __tablename__ = "government_vaccine_schedules"

    id = Column(String, primary_key=True)
    vaccine_name = Column(String, nullable=False)
    age_group = Column(String, nullable=False, default="")
    doses = Column(Integer, nullable=False, default=1)
    interval_between_doses = Column(Integer, nullable=False, default=0)  # days
    booster_required = Column(Boolean, nullable=False, default=False)
    booster_interval_days = Column(Integer, nullable=False, default=0)
    priority = Column(String, nullable=False, default=Priority.MEDIUM.value)
    source = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    mandatory_for = Column(JSONType, nullable=False, default=list)
    last_updated = Column(DateTime, default=now_local, nullable=False)


class ChannelAddress(Base):
    """Where a user's notifications go on a channel (FCM token, phone, email)"""
    __tablename__ = "channel_addresses"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    channel = Column(String, nullable=False)
    address = Column(String, nullable=False)
    created_at = Column(DateTime, default=now_local, nullable=False)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "channel", name="uq_channel_addresses_user_channel"),
    )


def build_reminder(**fields) -> Reminder:
    """Unsaved Reminder with every column populated.

    Column defaults only apply at flush time; the read-side aggregators work on
    transient instances too, so they must never see None where a list, dict or
    status is expected.
    """
    values = {
        "id": _new_id(),
        "description": "",
        "notes": None,
        "category": ReminderCategory.CUSTOM.value,
        "priority": Priority.MEDIUM.value,
        "status": "pending",
        "recurrence_pattern": None,
        "is_recurring": False,
        "parent_reminder_id": None,
        "occurrence_number": 1,
        "notification_channels": [],
        "advance_notice_days": [],
        "dispatched_offsets": {},
        "government_mandated": False,
        "linked_schedule_id": None,
        "dose_index": None,
        "completed_at": None,
    }
    values.update(fields)
    values["is_recurring"] = bool(values["recurrence_pattern"])
    return Reminder(**values)
