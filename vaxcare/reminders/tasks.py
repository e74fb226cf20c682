"""
Celery tasks: the periodic scan that claims due dispatches, the dispatch
consumer that hands them to a transport, and the government feed refresh.

The scan/deliver bodies take the session, clock and transport as arguments so
they run the same way under a worker and in tests.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

import httpx
from celery import shared_task
from sqlalchemy.orm import Session

from vaxcare.db.session import SessionLocal
from vaxcare.utils.timezone import now_local
from .celery_app import celery_app
from .config import settings
from .dispatcher import ChannelRouter, DispatchOutcome, DispatchTransport, NotificationMessage, default_senders
from .exceptions import TransientDispatchFailure
from .metrics import (
    reminders_dispatch_cancelled_total,
    reminders_dispatch_failed_total,
    reminders_dispatch_success_total,
    scheduler_dispatched_total,
    scheduler_scans_total,
)
from .notifications import MarkerState, NotificationDispatch, NotificationScheduler, build_message, is_still_valid
from .repository import claim_dispatch, get_channel_address, get_dispatch_candidates, get_reminder, set_marker

logger = logging.getLogger(__name__)


class DeliveryResult(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


def publish_dispatch(dispatch: NotificationDispatch) -> None:
    celery_app.send_task(
        "reminders.dispatch",
        args=[dispatch.to_event()],
        queue=settings.OUTPUT_QUEUE,
        routing_key=settings.OUTPUT_ROUTING_KEY,
    )


def build_transport(db: Session) -> DispatchTransport:
    return ChannelRouter(
        default_senders(settings),
        address_lookup=lambda user_id, channel: get_channel_address(db, user_id, channel),
        dry_run=settings.DISPATCH_DRY_RUN,
    )


def scan_and_dispatch(
    db: Session,
    now: datetime,
    publish: Callable[[NotificationDispatch], None] = publish_dispatch,
    batch_size: int = settings.SCHEDULER_BATCH_SIZE,
) -> int:
    """Claim every due, unmarked dispatch and publish it. Returns number queued."""
    scheduler = NotificationScheduler(settings.DISPATCH_GRACE_SECONDS)
    # fire_at never falls after the scheduled date, so older dates have nothing left to fire
    since = (now - scheduler.grace).date()
    scheduler_scans_total.inc()

    dispatched = 0
    offset = 0
    while True:
        batch = get_dispatch_candidates(db, since, limit=batch_size, offset=offset)
        for reminder in batch:
            reminder_id = reminder.id
            try:
                for dispatch in scheduler.due(reminder, now):
                    if not claim_dispatch(db, reminder_id, dispatch.key):
                        continue
                    try:
                        publish(dispatch)
                    except Exception:
                        logger.exception(f"[Dispatch] Failed to publish {reminder_id} {dispatch.key}")
                        set_marker(db, reminder_id, dispatch.key, MarkerState.FAILED)
                        reminders_dispatch_failed_total.labels(channel=dispatch.channel, kind="publish").inc()
                        continue
                    dispatched += 1
                    scheduler_dispatched_total.inc()
            except Exception:
                # One broken reminder must not stop the scan for everyone else
                db.rollback()
                logger.exception(f"[Dispatch] Scan failed for reminder {reminder_id}")
        if len(batch) < batch_size:
            break
        offset += batch_size

    if dispatched:
        logger.info(f"[Dispatch] Queued {dispatched} notification(s)")
    return dispatched


def deliver(
    db: Session,
    dispatch: NotificationDispatch,
    transport: DispatchTransport,
    final_attempt: bool = False,
) -> DeliveryResult:
    """Send one claimed dispatch at most once.

    The marker moves queued -> sent before the transport is called, so a
    redelivered task finds it taken and does nothing. A transient failure
    puts it back to queued and raises TransientDispatchFailure for a retry,
    unless this is the final attempt. A transport that raises is a failure,
    not a retry.
    """
    reminder = get_reminder(db, dispatch.reminder_id)
    if not is_still_valid(reminder, dispatch):
        logger.info(f"[Dispatch] Dropping stale dispatch {dispatch.reminder_id} {dispatch.key}")
        if reminder is not None:
            set_marker(db, reminder.id, dispatch.key, MarkerState.CANCELLED)
        reminders_dispatch_cancelled_total.inc()
        return DeliveryResult.SKIPPED

    title, body = build_message(reminder)
    message = NotificationMessage(
        title=title,
        body=body,
        data={
            "reminder_id": reminder.id,
            "channel": dispatch.channel,
            "offset_days": str(dispatch.offset_days),
            "scheduled_date": reminder.scheduled_date.isoformat(),
        },
    )

    if not set_marker(db, reminder.id, dispatch.key, MarkerState.SENT):
        logger.info(f"[Dispatch] {dispatch.reminder_id} {dispatch.key} already taken by another worker")
        return DeliveryResult.SKIPPED

    try:
        result = transport.send(dispatch.channel, dispatch.user_id, message, dispatch.fire_at)
    except Exception:
        logger.exception(f"[Dispatch] {dispatch.channel} transport raised for {dispatch.reminder_id} {dispatch.key}")
        set_marker(db, reminder.id, dispatch.key, MarkerState.FAILED, expected=MarkerState.SENT)
        reminders_dispatch_failed_total.labels(channel=dispatch.channel, kind="error").inc()
        return DeliveryResult.FAILED

    if result.outcome == DispatchOutcome.SUCCESS:
        reminders_dispatch_success_total.labels(channel=dispatch.channel).inc()
        logger.info(f"[Dispatch] Sent {dispatch.channel} notice for {dispatch.reminder_id} ({dispatch.offset_days}d)")
        return DeliveryResult.SENT

    if result.outcome == DispatchOutcome.PERMANENT_FAILURE:
        set_marker(db, reminder.id, dispatch.key, MarkerState.FAILED, expected=MarkerState.SENT)
        reminders_dispatch_failed_total.labels(channel=dispatch.channel, kind="permanent").inc()
        logger.warning(f"[Dispatch] Permanent {dispatch.channel} failure for {dispatch.reminder_id}: {result.detail}")
        return DeliveryResult.FAILED

    if final_attempt:
        set_marker(db, reminder.id, dispatch.key, MarkerState.FAILED, expected=MarkerState.SENT)
        reminders_dispatch_failed_total.labels(channel=dispatch.channel, kind="exhausted").inc()
        logger.error(f"[Dispatch] Giving up on {dispatch.channel} for {dispatch.reminder_id}: {result.detail}")
        return DeliveryResult.FAILED

    set_marker(db, reminder.id, dispatch.key, MarkerState.QUEUED, expected=MarkerState.SENT)
    reminders_dispatch_failed_total.labels(channel=dispatch.channel, kind="transient").inc()
    logger.warning(f"[Dispatch] Transient {dispatch.channel} failure for {dispatch.reminder_id}: {result.detail}")
    raise TransientDispatchFailure(dispatch.channel, result.detail)


@shared_task(name="reminders.scan_and_dispatch")
def scan_and_dispatch_task() -> int:
    """Scan for due notifications and publish to the dispatch queue. Returns number dispatched."""
    db: Session = SessionLocal()
    try:
        return scan_and_dispatch(db, now_local())
    finally:
        db.close()


@shared_task(
    bind=True,
    name="reminders.dispatch",
    autoretry_for=(TransientDispatchFailure,),
    retry_backoff=True,
    retry_backoff_max=settings.DISPATCH_RETRY_BACKOFF_MAX_SECONDS,
    retry_jitter=True,
    max_retries=settings.DISPATCH_MAX_RETRIES,
)
def dispatch_task(self, event: dict) -> str:
    """Consume the dispatch queue and send through the channel's transport."""
    db: Session = SessionLocal()
    try:
        final_attempt = self.request.retries >= self.max_retries
        return deliver(db, NotificationDispatch.from_event(event), build_transport(db), final_attempt).value
    finally:
        db.close()


@shared_task(name="reminders.refresh_government_schedules")
def refresh_government_schedules_task(feed_url: Optional[str] = None) -> int:
    from .service import ReminderService

    db: Session = SessionLocal()
    try:
        return ReminderService(db).refresh_government_schedules(feed_url)
    except (httpx.HTTPError, ValueError) as exc:
        # Existing reference data stays in place until the next successful refresh
        logger.error(f"[GovSync] Government feed refresh failed: {exc}")
        return 0
    finally:
        db.close()
