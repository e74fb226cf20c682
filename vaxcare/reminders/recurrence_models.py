"""
Recurrence rules and next-occurrence arithmetic
"""
from datetime import date, timedelta
from typing import Optional, Dict, Any
from enum import Enum
from dataclasses import dataclass

from dateutil.relativedelta import relativedelta

from .exceptions import NoRecurrence, ValidationError


class RecurrenceType(Enum):
    """Units a recurrence rule can step by"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class RecurrencePattern:
    """Every `interval` days/weeks/months/years"""
    type: RecurrenceType
    interval: int = 1

    def __post_init__(self):
        if not isinstance(self.interval, int) or isinstance(self.interval, bool) or self.interval < 1:
            raise ValidationError(f"Recurrence interval must be a positive integer, got {self.interval!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "interval": self.interval}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["RecurrencePattern"]:
        """Parse a stored pattern; None or {"type": "none"} means no recurrence."""
        if not data or data.get("type") in (None, "none"):
            return None
        try:
            kind = RecurrenceType(data["type"])
        except ValueError:
            raise ValidationError(f"Unknown recurrence type: {data['type']!r}")
        return cls(type=kind, interval=data.get("interval", 1))


class RecurrenceCalculator:
    """Calculates the next occurrence for a recurrence pattern"""

    @staticmethod
    def calculate_next_occurrence(anchor: date, pattern: Optional[RecurrencePattern]) -> date:
        """Return the date one step after `anchor`.

        Day and week steps are exact calendar additions. Month and year steps
        clamp an overflowing day-of-month to the last day of the target month,
        so Jan 31 + 1 month is Feb 28 (Feb 29 in leap years) and Feb 29 + 1 year
        is Feb 28.
        """
        if pattern is None:
            raise NoRecurrence("Reminder has no recurrence rule")

        if pattern.type == RecurrenceType.DAILY:
            return anchor + timedelta(days=pattern.interval)
        if pattern.type == RecurrenceType.WEEKLY:
            return anchor + timedelta(weeks=pattern.interval)
        if pattern.type == RecurrenceType.MONTHLY:
            return anchor + relativedelta(months=pattern.interval)
        if pattern.type == RecurrenceType.YEARLY:
            return anchor + relativedelta(years=pattern.interval)
        raise NoRecurrence(f"Unsupported recurrence type: {pattern.type}")


def next_occurrence(anchor: date, pattern: Optional[RecurrencePattern]) -> date:
    return RecurrenceCalculator.calculate_next_occurrence(anchor, pattern)


# Predefined patterns for common use cases
class CommonPatterns:
    """Common recurrence patterns"""

    @staticmethod
    def yearly() -> RecurrencePattern:
        return RecurrencePattern(type=RecurrenceType.YEARLY, interval=1)
