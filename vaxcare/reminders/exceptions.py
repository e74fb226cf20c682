"""Error taxonomy of the reminder engine."""


class ReminderEngineError(Exception):
    """Base class for engine errors."""


class ValidationError(ReminderEngineError):
    """Rejected input: missing name, invalid date, negative offsets, ..."""


class NotFoundError(ReminderEngineError):
    pass


class ReminderNotFound(NotFoundError):
    def __init__(self, reminder_id: str):
        super().__init__(f"Reminder not found: {reminder_id}")
        self.reminder_id = reminder_id


class ScheduleNotFound(NotFoundError):
    def __init__(self, schedule_id: str):
        super().__init__(f"Government schedule not found: {schedule_id}")
        self.schedule_id = schedule_id


class NoRecurrence(ReminderEngineError):
    """Raised when advancing a reminder that does not recur."""


class InvalidSchedule(ReminderEngineError):
    def __init__(self, schedule_id: str | None, reason: str):
        super().__init__(f"Invalid government schedule {schedule_id}: {reason}")
        self.schedule_id = schedule_id
        self.reason = reason


class ConcurrencyConflict(ReminderEngineError):
    """Optimistic version check failed; the reminder changed underneath the caller."""


class TransportFailure(ReminderEngineError):
    def __init__(self, channel: str, reason: str, permanent: bool):
        super().__init__(f"{'Permanent' if permanent else 'Transient'} {channel} failure: {reason}")
        self.channel = channel
        self.reason = reason
        self.permanent = permanent


class TransientDispatchFailure(TransportFailure):
    """Retryable transport failure; drives the bounded Celery retry."""

    def __init__(self, channel: str, reason: str):
        super().__init__(channel, reason, permanent=False)
