from datetime import date, datetime, time

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.orm import sessionmaker

from tests.conftest import FakeTransport
from vaxcare.reminders import repository
from vaxcare.reminders.dispatcher import (
    ChannelRouter,
    ChannelSender,
    DispatchOutcome,
    DispatchResult,
    DispatchTransport,
    NotificationMessage,
)
from vaxcare.reminders.models import Reminder
from vaxcare.reminders.exceptions import TransientDispatchFailure
from vaxcare.reminders.schemas import NotificationSettingsIn, ReminderCreate, ReminderUpdate
from vaxcare.reminders.tasks import DeliveryResult, deliver, scan_and_dispatch

FIRE_TIME = datetime(2024, 6, 23, 9, 10)


@pytest.fixture
def reminder(service):
    return service.create_reminder(
        ReminderCreate(
            user_id="user-1",
            name="Hepatitis B dose 2",
            scheduled_date=date(2024, 6, 30),
            scheduled_time=time(9, 0),
            notification_settings=NotificationSettingsIn(channels=["push"], advance_notice_days=[7, 1]),
        )
    )


@pytest.fixture
def queued(db, reminder):
    published = []
    assert scan_and_dispatch(db, FIRE_TIME, publish=published.append) == 1
    return published[0]


def _marker(db, reminder_id, key="push:7"):
    return repository.get_reminder(db, reminder_id).dispatched_offsets.get(key)


def test_scan_claims_due_dispatch_once(db, reminder):
    published = []
    assert scan_and_dispatch(db, FIRE_TIME, publish=published.append) == 1
    assert [(d.reminder_id, d.key, d.fire_at) for d in published] == [
        (reminder.id, "push:7", datetime(2024, 6, 23, 9, 0))
    ]
    assert _marker(db, reminder.id) == "queued"

    assert scan_and_dispatch(db, FIRE_TIME, publish=published.append) == 0
    assert len(published) == 1


@pytest.mark.parametrize("now", [datetime(2024, 6, 23, 8, 59), datetime(2024, 6, 23, 10, 30)])
def test_scan_ignores_instants_outside_the_grace_window(db, reminder, now):
    published = []
    assert scan_and_dispatch(db, now, publish=published.append) == 0
    assert published == []


def test_scan_pages_through_candidates(db, service, reminder):
    other = service.create_reminder(
        ReminderCreate(
            user_id="user-2",
            name="Flu shot",
            scheduled_date=date(2024, 6, 30),
            scheduled_time=time(9, 0),
            notification_settings=NotificationSettingsIn(channels=["push"], advance_notice_days=[7]),
        )
    )
    published = []
    assert scan_and_dispatch(db, FIRE_TIME, publish=published.append, batch_size=1) == 2
    assert {d.reminder_id for d in published} == {reminder.id, other.id}


def test_publish_failure_marks_dispatch_failed(db, reminder):
    def broken(dispatch):
        raise ConnectionError("broker down")

    assert scan_and_dispatch(db, FIRE_TIME, publish=broken) == 0
    assert _marker(db, reminder.id) == "failed"


def test_deliver_sends_once(db, queued):
    transport = FakeTransport()
    assert deliver(db, queued, transport) == DeliveryResult.SENT
    assert _marker(db, queued.reminder_id) == "sent"

    channel, user_id, message, fire_at = transport.sent[0]
    assert (channel, user_id, fire_at) == ("push", "user-1", datetime(2024, 6, 23, 9, 0))
    assert message.title == "Vaccination Reminder: Hepatitis B dose 2"

    # A redelivered task finds the marker taken
    assert deliver(db, queued, transport) == DeliveryResult.SKIPPED
    assert len(transport.sent) == 1


def test_permanent_failure_is_not_retried(db, queued):
    transport = FakeTransport(DispatchResult.permanent("token unregistered"))
    assert deliver(db, queued, transport) == DeliveryResult.FAILED
    assert _marker(db, queued.reminder_id) == "failed"
    assert deliver(db, queued, transport) == DeliveryResult.SKIPPED
    assert len(transport.sent) == 1


def test_transient_failure_retries_then_gives_up(db, queued):
    transport = FakeTransport(DispatchResult.transient("503"), DispatchResult.transient("503"))

    with pytest.raises(TransientDispatchFailure):
        deliver(db, queued, transport)
    assert _marker(db, queued.reminder_id) == "queued"

    assert deliver(db, queued, transport, final_attempt=True) == DeliveryResult.FAILED
    assert _marker(db, queued.reminder_id) == "failed"
    assert len(transport.sent) == 2


def test_transient_failure_then_success(db, queued):
    transport = FakeTransport(DispatchResult.transient("timeout"))
    with pytest.raises(TransientDispatchFailure):
        deliver(db, queued, transport)
    assert deliver(db, queued, transport) == DeliveryResult.SENT
    assert _marker(db, queued.reminder_id) == "sent"


def test_completed_reminder_does_not_fire(db, service, queued):
    service.complete_reminder(queued.reminder_id)
    transport = FakeTransport()
    assert deliver(db, queued, transport) == DeliveryResult.SKIPPED
    assert transport.sent == []
    assert _marker(db, queued.reminder_id) == "cancelled"


def test_deleted_reminder_does_not_fire(db, service, queued):
    service.delete_reminder(queued.reminder_id)
    transport = FakeTransport()
    assert deliver(db, queued, transport) == DeliveryResult.SKIPPED
    assert transport.sent == []


def test_rescheduled_reminder_does_not_fire_old_instant(db, service, queued):
    service.update_reminder(queued.reminder_id, ReminderUpdate(scheduled_date=date(2024, 7, 30)))
    transport = FakeTransport()
    assert deliver(db, queued, transport) == DeliveryResult.SKIPPED
    assert transport.sent == []


def _failed_count(channel, kind):
    value = REGISTRY.get_sample_value(
        "vaccination_reminders_dispatch_failed_total", {"channel": channel, "kind": kind}
    )
    return value or 0.0


class RaisingTransport(DispatchTransport):
    def send(self, channel, user_id, message, fire_at):
        raise RuntimeError("sdk rejected the message")


def test_transport_exception_marks_dispatch_failed(db, queued):
    before = _failed_count("push", "error")
    assert deliver(db, queued, RaisingTransport()) == DeliveryResult.FAILED
    assert _marker(db, queued.reminder_id) == "failed"
    assert _failed_count("push", "error") == before + 1

    transport = FakeTransport()
    assert deliver(db, queued, transport) == DeliveryResult.SKIPPED
    assert transport.sent == []


def test_claim_skips_resolved_reminder(db, service, reminder):
    service.cancel_reminder(reminder.id)
    assert repository.claim_dispatch(db, reminder.id, "push:7") is False
    assert _marker(db, reminder.id) is None


def test_concurrent_claims_only_one_wins(engine, db, reminder):
    other = sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)()
    try:
        # Both scanners hold the reminder at the same version
        assert other.get(Reminder, reminder.id).version == reminder.version
        assert repository.claim_dispatch(db, reminder.id, "push:7") is True
        assert repository.claim_dispatch(other, reminder.id, "push:7") is False
    finally:
        other.close()
    assert _marker(db, reminder.id) == "queued"


class RecordingSender(ChannelSender):
    def __init__(self):
        self.calls = []

    def send(self, address, message):
        self.calls.append(address)
        return DispatchResult.ok()


def _router(addresses, dry_run=False):
    sender = RecordingSender()
    router = ChannelRouter({"sms": sender}, lambda user_id, channel: addresses.get((user_id, channel)), dry_run)
    return router, sender


def test_router_resolves_address():
    router, sender = _router({("user-1", "sms"): "+911234567890"})
    result = router.send("sms", "user-1", NotificationMessage("t", "b"), FIRE_TIME)
    assert result.outcome == DispatchOutcome.SUCCESS
    assert sender.calls == ["+911234567890"]


def test_router_missing_address_or_channel_is_permanent():
    router, sender = _router({})
    assert router.send("sms", "user-1", NotificationMessage("t", "b"), FIRE_TIME).outcome == DispatchOutcome.PERMANENT_FAILURE
    assert router.send("fax", "user-1", NotificationMessage("t", "b"), FIRE_TIME).outcome == DispatchOutcome.PERMANENT_FAILURE
    assert sender.calls == []


def test_router_dry_run_does_not_send():
    router, sender = _router({("user-1", "sms"): "+911234567890"}, dry_run=True)
    assert router.send("sms", "user-1", NotificationMessage("t", "b"), FIRE_TIME).outcome == DispatchOutcome.SUCCESS
    assert sender.calls == []
