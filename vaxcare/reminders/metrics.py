from prometheus_client import Counter


reminders_created_total = Counter(
    "vaccination_reminders_created_total",
    "Total reminders created",
    ["category"],
)

reminders_completed_total = Counter(
    "vaccination_reminders_completed_total",
    "Total reminders marked completed",
)

reminders_deleted_total = Counter(
    "vaccination_reminders_deleted_total",
    "Total reminders deleted",
)

government_reminders_synced_total = Counter(
    "vaccination_government_reminders_synced_total",
    "Reminders created from government schedules",
)

government_sync_failures_total = Counter(
    "vaccination_government_sync_failures_total",
    "Government schedule entries that failed to expand",
)

scheduler_scans_total = Counter(
    "vaccination_reminder_scheduler_scans_total",
    "Total scheduler scan cycles",
)

scheduler_dispatched_total = Counter(
    "vaccination_reminder_scheduler_dispatched_total",
    "Total dispatches claimed and queued by the scheduler",
)

reminders_dispatch_success_total = Counter(
    "vaccination_reminders_dispatch_success_total",
    "Total successful notification dispatches",
    ["channel"],
)

reminders_dispatch_failed_total = Counter(
    "vaccination_reminders_dispatch_failed_total",
    "Total failed notification dispatches",
    ["channel", "kind"],
)

reminders_dispatch_cancelled_total = Counter(
    "vaccination_reminders_dispatch_cancelled_total",
    "Queued dispatches dropped because the reminder changed or resolved",
)
