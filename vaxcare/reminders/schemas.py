"""
Request/response schemas for the reminder API
"""
from datetime import date, datetime, time
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .models import Priority
from .status import EffectiveStatus, ReminderStatus


class RecurrenceIn(BaseModel):
    """{"type": "none"} or a unit with a positive interval"""
    type: Literal["none", "daily", "weekly", "monthly", "yearly"] = "none"
    interval: int = 1


class NotificationSettingsIn(BaseModel):
    channels: List[str] = Field(default_factory=list)
    advance_notice_days: List[int] = Field(default_factory=list)


class ReminderCreate(BaseModel):
    """Schema for creating a custom reminder"""
    user_id: str
    name: str
    description: str = ""
    notes: Optional[str] = None
    scheduled_date: date
    scheduled_time: Optional[time] = None
    priority: Priority = Priority.MEDIUM
    recurrence: Optional[RecurrenceIn] = None
    notification_settings: Optional[NotificationSettingsIn] = None


class ReminderUpdate(BaseModel):
    """Partial update; unset fields are left alone"""
    name: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    priority: Optional[Priority] = None
    status: Optional[ReminderStatus] = None
    recurrence: Optional[RecurrenceIn] = None
    notification_settings: Optional[NotificationSettingsIn] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


class ReminderRead(BaseModel):
    id: str
    user_id: str
    name: str
    description: str
    notes: Optional[str] = None
    category: str
    priority: str
    status: str
    effective_status: EffectiveStatus
    scheduled_date: date
    scheduled_time: time
    recurrence: Optional[Dict[str, object]] = None
    next_due_date: Optional[date] = None
    parent_reminder_id: Optional[str] = None
    occurrence_number: int = 1
    notification_channels: List[str]
    advance_notice_days: List[int]
    dispatched_offsets: Dict[str, str]
    government_mandated: bool
    linked_schedule_id: Optional[str] = None
    dose_index: Optional[int] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class CalendarEventRead(BaseModel):
    reminder_id: str
    title: str
    date: date
    time: time
    priority: str
    effective_status: EffectiveStatus
    government_mandated: bool
    is_booster: bool


class CalendarDayRead(BaseModel):
    date: date
    in_window: bool
    events: List[CalendarEventRead]


class CalendarViewRead(BaseModel):
    mode: Literal["month", "week"]
    window_start: date
    window_end: date
    grid_start: date
    grid_end: date
    days: List[CalendarDayRead]


class ReminderStatsRead(BaseModel):
    total: int
    upcoming: int
    overdue: int
    completed_this_period: int


class GovernmentSyncRequest(BaseModel):
    user_id: str
    schedule_ids: List[str]
    reference_date: Optional[date] = None
    skip_existing: bool = False


class SyncFailureRead(BaseModel):
    schedule_id: str
    reason: str


class GovernmentSyncResult(BaseModel):
    created: List[ReminderRead]
    failed: List[SyncFailureRead]


class GovernmentScheduleRead(BaseModel):
    id: str
    vaccine_name: str
    age_group: str
    doses: int
    interval_between_doses: int
    booster_required: bool
    booster_interval_days: int
    priority: str
    source: str
    description: str
    mandatory_for: List[str] = Field(default_factory=list)


class ChannelAddressCreate(BaseModel):
    user_id: str
    channel: str = Field(..., pattern="^(push|sms|email)$")
    address: str


class ChannelAddressRead(BaseModel):
    id: str
    user_id: str
    channel: str
    address: str
    created_at: datetime
    updated_at: datetime


class DispatchRead(BaseModel):
    reminder_id: str
    channel: str
    offset_days: int
    fire_at: datetime
