from datetime import date, datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from vaxcare.api.deps import verify_api_key_dependency
from vaxcare.db.session import get_db
from vaxcare.utils.timezone import now_local
from .calendar_view import CalendarView
from .exceptions import (
    ConcurrencyConflict,
    InvalidSchedule,
    NoRecurrence,
    NotFoundError,
    ReminderEngineError,
    ValidationError,
)
from .government import SyncOutcome
from .models import Priority, Reminder
from .recurrence_models import RecurrencePattern, next_occurrence
from .schemas import (
    CalendarDayRead,
    CalendarEventRead,
    CalendarViewRead,
    ChannelAddressCreate,
    ChannelAddressRead,
    DispatchRead,
    GovernmentScheduleRead,
    GovernmentSyncRequest,
    GovernmentSyncResult,
    ReminderCreate,
    ReminderRead,
    ReminderStatsRead,
    ReminderUpdate,
    SyncFailureRead,
)
from .service import ReminderService
from .status import ReminderStatus, resolve


router = APIRouter(dependencies=[Depends(verify_api_key_dependency)])


def get_service(db: Session = Depends(get_db)) -> ReminderService:
    return ReminderService(db)


def _http_error(exc: ReminderEngineError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConcurrencyConflict):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (ValidationError, NoRecurrence, InvalidSchedule)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def to_read(r: Reminder, now: datetime) -> ReminderRead:
    pattern = RecurrencePattern.from_dict(r.recurrence_pattern) if r.recurrence_pattern else None
    return ReminderRead(
        id=r.id,
        user_id=r.user_id,
        name=r.name,
        description=r.description or "",
        notes=r.notes,
        category=r.category,
        priority=r.priority,
        status=r.status,
        effective_status=resolve(r, now),
        scheduled_date=r.scheduled_date,
        scheduled_time=r.scheduled_time,
        recurrence=pattern.to_dict() if pattern else None,
        next_due_date=next_occurrence(r.scheduled_date, pattern) if pattern else None,
        parent_reminder_id=r.parent_reminder_id,
        occurrence_number=r.occurrence_number or 1,
        notification_channels=list(r.notification_channels or []),
        advance_notice_days=list(r.advance_notice_days or []),
        dispatched_offsets=dict(r.dispatched_offsets or {}),
        government_mandated=bool(r.government_mandated),
        linked_schedule_id=r.linked_schedule_id,
        dose_index=r.dose_index,
        version=r.version,
        created_at=r.created_at,
        updated_at=r.updated_at,
        completed_at=r.completed_at,
    )


def _calendar_read(view: CalendarView) -> CalendarViewRead:
    return CalendarViewRead(
        mode=view.mode,
        window_start=view.window_start,
        window_end=view.window_end,
        grid_start=view.grid_start,
        grid_end=view.grid_end,
        days=[
            CalendarDayRead(
                date=day.date,
                in_window=day.in_window,
                events=[
                    CalendarEventRead(
                        reminder_id=e.reminder_id,
                        title=e.title,
                        date=e.date,
                        time=e.time,
                        priority=e.priority,
                        effective_status=e.effective_status,
                        government_mandated=e.government_mandated,
                        is_booster=e.is_booster,
                    )
                    for e in day.events
                ],
            )
            for day in view.days
        ],
    )


def _sync_read(outcome: SyncOutcome, now: datetime) -> GovernmentSyncResult:
    return GovernmentSyncResult(
        created=[to_read(r, now) for r in outcome.created],
        failed=[SyncFailureRead(schedule_id=f.schedule_id, reason=f.reason) for f in outcome.failed],
    )


@router.get("/health")
def health():
    return {"status": "ok", "time": now_local().isoformat()}


@router.post("/", response_model=ReminderRead, status_code=201)
def create_reminder_endpoint(payload: ReminderCreate, service: ReminderService = Depends(get_service)):
    try:
        r = service.create_reminder(payload)
    except ReminderEngineError as exc:
        raise _http_error(exc)
    return to_read(r, service.now_fn())


@router.get("/", response_model=List[ReminderRead])
def list_reminders_endpoint(
    user_id: str,
    status: Optional[ReminderStatus] = None,
    priority: Optional[Priority] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: ReminderService = Depends(get_service),
):
    try:
        items = service.list_reminders(
            user_id,
            status=status.value if status else None,
            priority=priority.value if priority else None,
            start=start,
            end=end,
            limit=limit,
            offset=offset,
        )
    except ReminderEngineError as exc:
        raise _http_error(exc)
    now = service.now_fn()
    return [to_read(i, now) for i in items]


@router.get("/search", response_model=List[ReminderRead])
def search_reminders_endpoint(
    user_id: str,
    q: str,
    limit: int = Query(100, ge=1, le=1000),
    service: ReminderService = Depends(get_service),
):
    try:
        items = service.search_reminders(user_id, q, limit=limit)
    except ReminderEngineError as exc:
        raise _http_error(exc)
    now = service.now_fn()
    return [to_read(i, now) for i in items]


@router.get("/upcoming", response_model=List[ReminderRead])
def upcoming_reminders_endpoint(
    user_id: str,
    days: Optional[int] = Query(None, ge=0, le=3660),
    service: ReminderService = Depends(get_service),
):
    items = service.get_upcoming(user_id, days)
    now = service.now_fn()
    return [to_read(i, now) for i in items]


@router.get("/overdue", response_model=List[ReminderRead])
def overdue_reminders_endpoint(user_id: str, service: ReminderService = Depends(get_service)):
    items = service.get_overdue(user_id)
    now = service.now_fn()
    return [to_read(i, now) for i in items]


@router.get("/stats", response_model=ReminderStatsRead)
def reminder_stats_endpoint(user_id: str, service: ReminderService = Depends(get_service)):
    stats = service.get_stats(user_id)
    return ReminderStatsRead(
        total=stats.total,
        upcoming=stats.upcoming,
        overdue=stats.overdue,
        completed_this_period=stats.completed_this_period,
    )


@router.get("/calendar", response_model=CalendarViewRead)
def calendar_view_endpoint(
    user_id: str,
    start: date,
    end: Optional[date] = None,
    mode: Literal["month", "week"] = "month",
    service: ReminderService = Depends(get_service),
):
    """Day buckets for [start, end], padded to whole Sunday-Saturday weeks."""
    try:
        view = service.get_calendar_view(user_id, start, end or start, mode)
    except ReminderEngineError as exc:
        raise _http_error(exc)
    return _calendar_read(view)


@router.post("/government/sync", response_model=GovernmentSyncResult)
def sync_government_schedules_endpoint(payload: GovernmentSyncRequest, service: ReminderService = Depends(get_service)):
    try:
        outcome = service.sync_government_schedules(
            payload.user_id,
            payload.schedule_ids,
            reference_date=payload.reference_date,
            skip_existing=payload.skip_existing,
        )
    except ReminderEngineError as exc:
        raise _http_error(exc)
    return _sync_read(outcome, service.now_fn())


@router.get("/government/schedules", response_model=List[GovernmentScheduleRead])
def list_government_schedules_endpoint(service: ReminderService = Depends(get_service)):
    return [
        GovernmentScheduleRead(
            id=s.id,
            vaccine_name=s.vaccine_name,
            age_group=s.age_group or "",
            doses=s.doses,
            interval_between_doses=s.interval_between_doses or 0,
            booster_required=bool(s.booster_required),
            booster_interval_days=s.booster_interval_days or 0,
            priority=s.priority,
            source=s.source or "",
            description=s.description or "",
            mandatory_for=list(s.mandatory_for or []),
        )
        for s in service.list_government_schedules()
    ]


@router.post("/contacts", response_model=ChannelAddressRead)
def register_channel_address_endpoint(payload: ChannelAddressCreate, service: ReminderService = Depends(get_service)):
    """Register or replace where a user's notifications go on one channel."""
    try:
        entry = service.register_channel_address(payload.user_id, payload.channel, payload.address)
    except ReminderEngineError as exc:
        raise _http_error(exc)
    return ChannelAddressRead(
        id=entry.id,
        user_id=entry.user_id,
        channel=entry.channel,
        address=entry.address,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


@router.get("/{reminder_id}", response_model=ReminderRead)
def get_reminder_endpoint(
    reminder_id: str,
    user_id: Optional[str] = None,
    service: ReminderService = Depends(get_service),
):
    try:
        r = service.get_reminder(reminder_id, user_id)
    except ReminderEngineError as exc:
        raise _http_error(exc)
    return to_read(r, service.now_fn())


@router.patch("/{reminder_id}", response_model=ReminderRead)
def update_reminder_endpoint(
    reminder_id: str,
    payload: ReminderUpdate,
    user_id: Optional[str] = None,
    service: ReminderService = Depends(get_service),
):
    try:
        r = service.update_reminder(reminder_id, payload, user_id)
    except ReminderEngineError as exc:
        raise _http_error(exc)
    return to_read(r, service.now_fn())


@router.post("/{reminder_id}/complete", response_model=ReminderRead)
def complete_reminder_endpoint(
    reminder_id: str,
    user_id: Optional[str] = None,
    expected_version: Optional[int] = Query(None, ge=1),
    service: ReminderService = Depends(get_service),
):
    try:
        r = service.complete_reminder(reminder_id, user_id, expected_version)
    except ReminderEngineError as exc:
        raise _http_error(exc)
    return to_read(r, service.now_fn())


@router.post("/{reminder_id}/cancel", response_model=ReminderRead)
def cancel_reminder_endpoint(
    reminder_id: str,
    user_id: Optional[str] = None,
    expected_version: Optional[int] = Query(None, ge=1),
    service: ReminderService = Depends(get_service),
):
    try:
        r = service.cancel_reminder(reminder_id, user_id, expected_version)
    except ReminderEngineError as exc:
        raise _http_error(exc)
    return to_read(r, service.now_fn())


@router.delete("/{reminder_id}", status_code=204)
def delete_reminder_endpoint(
    reminder_id: str,
    user_id: Optional[str] = None,
    service: ReminderService = Depends(get_service),
):
    try:
        service.delete_reminder(reminder_id, user_id)
    except ReminderEngineError as exc:
        raise _http_error(exc)
    return Response(status_code=204)


@router.get("/{reminder_id}/dispatches", response_model=List[DispatchRead])
def reminder_dispatches_endpoint(
    reminder_id: str,
    user_id: Optional[str] = None,
    service: ReminderService = Depends(get_service),
):
    """Future notification instants that have not fired yet."""
    try:
        dispatches = service.compute_dispatches(reminder_id, user_id)
    except ReminderEngineError as exc:
        raise _http_error(exc)
    return [
        DispatchRead(reminder_id=d.reminder_id, channel=d.channel, offset_days=d.offset_days, fire_at=d.fire_at)
        for d in dispatches
    ]
