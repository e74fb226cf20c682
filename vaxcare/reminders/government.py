"""
Government schedule expansion and the reference schedule catalogue
"""
import logging
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

from .exceptions import InvalidSchedule
from .models import (
    GovernmentVaccineSchedule,
    PRIORITY_RANK,
    Reminder,
    ReminderCategory,
    build_reminder,
)
from .recurrence_models import CommonPatterns
from vaxcare.utils.timezone import now_local

logger = logging.getLogger(__name__)

ANNUAL_BOOSTER_INTERVAL_DAYS = 365


# Used when no external feed is configured
DEFAULT_GOVERNMENT_SCHEDULES: List[Dict[str, Any]] = [
    {
        "id": "covid19_adult",
        "vaccine_name": "COVID-19 Vaccine",
        "age_group": "18+ years",
        "doses": 2,
        "interval_between_doses": 84,
        "booster_required": True,
        "booster_interval_days": 365,
        "mandatory_for": ["Healthcare workers", "Frontline workers", "Adults 60+"],
        "source": "CoWIN",
        "priority": "high",
        "description": "COVID-19 vaccination as per national immunization program",
    },
    {
        "id": "tetanus_adult",
        "vaccine_name": "Tetanus Toxoid (TT)",
        "age_group": "All adults",
        "doses": 1,
        "interval_between_doses": 0,
        "booster_required": True,
        "booster_interval_days": 3650,
        "mandatory_for": ["Pregnant women", "Healthcare workers"],
        "source": "National Immunization Program",
        "priority": "medium",
        "description": "Tetanus vaccination for adults as per national guidelines",
    },
    {
        "id": "hepatitis_b_adult",
        "vaccine_name": "Hepatitis B Vaccine",
        "age_group": "18-65 years",
        "doses": 3,
        "interval_between_doses": 30,
        "booster_required": False,
        "booster_interval_days": 0,
        "mandatory_for": ["Healthcare workers", "High-risk groups"],
        "source": "National Immunization Program",
        "priority": "medium",
        "description": "Hepatitis B vaccination for high-risk adults",
    },
    {
        "id": "influenza_annual",
        "vaccine_name": "Influenza Vaccine",
        "age_group": "6 months+",
        "doses": 1,
        "interval_between_doses": 0,
        "booster_required": True,
        "booster_interval_days": 365,
        "mandatory_for": ["Healthcare workers", "Adults 65+", "Chronic disease patients"],
        "source": "WHO Guidelines",
        "priority": "medium",
        "description": "Annual influenza vaccination as recommended by WHO",
    },
]


@dataclass
class ExpansionDefaults:
    """Time of day and notification settings stamped on generated reminders"""
    scheduled_time: time = time(10, 0)
    channels: Sequence[str] = ("push", "email")
    advance_notice_days: Sequence[int] = (30, 7, 1)


@dataclass
class SyncFailure:
    schedule_id: str
    reason: str


@dataclass
class SyncOutcome:
    created: List[Reminder] = field(default_factory=list)
    failed: List[SyncFailure] = field(default_factory=list)


def validate_schedule(schedule) -> None:
    if schedule.doses is None or schedule.doses < 1:
        raise InvalidSchedule(schedule.id, f"doses must be >= 1, got {schedule.doses}")
    if schedule.booster_required and (schedule.booster_interval_days is None or schedule.booster_interval_days < 0):
        raise InvalidSchedule(
            schedule.id, f"booster interval must be >= 0 days, got {schedule.booster_interval_days}"
        )
    if schedule.priority not in PRIORITY_RANK:
        raise InvalidSchedule(schedule.id, f"unknown priority {schedule.priority!r}")


def expand(
    schedule,
    user_id: str,
    reference_date: date,
    defaults: Optional[ExpansionDefaults] = None,
) -> List[Reminder]:
    """Turn one schedule entry into its primary reminder and optional booster.

    The booster of an annual (365-day) schedule recurs yearly; any other
    booster interval yields a one-time booster.
    """
    validate_schedule(schedule)
    defaults = defaults or ExpansionDefaults()

    common = dict(
        user_id=user_id,
        category=ReminderCategory.GOVERNMENT_MANDATED.value,
        government_mandated=True,
        priority=schedule.priority,
        scheduled_time=defaults.scheduled_time,
        linked_schedule_id=schedule.id,
        notification_channels=list(defaults.channels),
        advance_notice_days=list(defaults.advance_notice_days),
    )

    primary = build_reminder(
        name=schedule.vaccine_name,
        description=schedule.description or "",
        scheduled_date=reference_date,
        recurrence_pattern=None,
        dose_index=1,
        **common,
    )
    reminders = [primary]

    if schedule.booster_required:
        annual = schedule.booster_interval_days == ANNUAL_BOOSTER_INTERVAL_DAYS
        booster = build_reminder(
            name=f"{schedule.vaccine_name} - Booster",
            description=f"Booster dose for {schedule.vaccine_name} as per {schedule.source}",
            scheduled_date=reference_date + timedelta(days=schedule.booster_interval_days),
            recurrence_pattern=CommonPatterns.yearly().to_dict() if annual else None,
            dose_index=schedule.doses + 1,
            **common,
        )
        reminders.append(booster)

    return reminders


def expand_many(
    schedules: Iterable,
    user_id: str,
    reference_date: date,
    defaults: Optional[ExpansionDefaults] = None,
) -> SyncOutcome:
    """Expand each schedule independently; a malformed entry only fails itself."""
    outcome = SyncOutcome()
    for schedule in schedules:
        try:
            outcome.created.extend(expand(schedule, user_id, reference_date, defaults))
        except InvalidSchedule as exc:
            logger.warning(f"[GovSync] Skipping schedule {exc.schedule_id}: {exc.reason}")
            outcome.failed.append(SyncFailure(schedule_id=str(exc.schedule_id), reason=exc.reason))
    return outcome


def schedule_from_dict(data: Dict[str, Any]) -> GovernmentVaccineSchedule:
    """Build a schedule row from a feed entry (snake_case or the feed's camelCase)."""

    def pick(snake: str, camel: str, default=None):
        if snake in data:
            return data[snake]
        return data.get(camel, default)

    schedule_id = data.get("id")
    vaccine_name = pick("vaccine_name", "vaccineName")
    if not schedule_id or not vaccine_name:
        raise InvalidSchedule(schedule_id, "missing id or vaccine name")
    schedule_id = str(schedule_id)

    try:
        return GovernmentVaccineSchedule(
            id=schedule_id,
            vaccine_name=str(vaccine_name),
            age_group=pick("age_group", "ageGroup", ""),
            doses=int(pick("doses", "doses", 1)),
            interval_between_doses=int(pick("interval_between_doses", "intervalBetweenDoses", 0)),
            booster_required=bool(pick("booster_required", "boosterRequired", False)),
            booster_interval_days=int(pick("booster_interval_days", "boosterInterval", 0)),
            priority=pick("priority", "priority", "medium"),
            source=pick("source", "source", ""),
            description=pick("description", "description", ""),
            mandatory_for=list(pick("mandatory_for", "mandatoryFor", []) or []),
            last_updated=now_local(),
        )
    except (TypeError, ValueError) as exc:
        raise InvalidSchedule(schedule_id, f"malformed field: {exc}")


def default_catalogue() -> List[GovernmentVaccineSchedule]:
    return [schedule_from_dict(entry) for entry in DEFAULT_GOVERNMENT_SCHEDULES]


def parse_feed(payload: Any) -> List[GovernmentVaccineSchedule]:
    """Accepts a bare list or {"schedules": [...]}; malformed entries are dropped."""
    entries = payload.get("schedules", []) if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        raise ValueError("government feed must be a list of schedules")
    schedules = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.warning(f"[GovSync] Ignoring non-object feed entry: {entry!r}")
            continue
        try:
            schedules.append(schedule_from_dict(entry))
        except InvalidSchedule as exc:
            logger.warning(f"[GovSync] Ignoring feed entry {exc.schedule_id}: {exc.reason}")
    return schedules


def fetch_feed(url: str, timeout: float = 10.0) -> List[GovernmentVaccineSchedule]:
    """Download the reference schedules; HTTP errors propagate as httpx.HTTPError."""
    response = httpx.get(url, timeout=timeout)
    response.raise_for_status()
    return parse_feed(response.json())
