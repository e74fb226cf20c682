"""Wall-clock helpers.

Scheduled dates/times are stored as naive local values in
settings.DEFAULT_TIMEZONE; every "now" handed to the engine is produced here so
that comparisons never mix aware and naive datetimes.
"""
from datetime import datetime, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from vaxcare.core.config import settings


def get_zoneinfo() -> Optional[ZoneInfo]:
    tz_name = getattr(settings, "DEFAULT_TIMEZONE", None)
    if not tz_name:
        return None
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def now_local() -> datetime:
    """Current local wall-clock time, tzinfo stripped."""
    tz = get_zoneinfo()
    if tz is None:
        return datetime.now(dt_timezone.utc).replace(tzinfo=None)
    return datetime.now(tz).replace(tzinfo=None)

