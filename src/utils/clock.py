"""
Time helpers shared by handlers.

All stored timestamps are ISO-8601 UTC strings; appointment dates and
times are wall-clock values in the platform timezone (APP_TIMEZONE).
"""

import os
from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Seoul"


def now_utc() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Current time as an ISO-8601 UTC string."""
    return now_utc().isoformat()


def app_timezone() -> ZoneInfo:
    """Timezone appointment wall-clock times are expressed in."""
    return ZoneInfo(os.getenv("APP_TIMEZONE", DEFAULT_TIMEZONE))


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp (``Z`` suffix accepted); naive values are treated as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def local_datetime(date_str: str, time_str: str) -> datetime:
    """Combine ``YYYY-MM-DD`` and ``HH:MM[:SS]`` into an aware datetime in APP_TIMEZONE."""
    day = date.fromisoformat(date_str)
    hours, minutes = (int(part) for part in time_str.split(":")[:2])
    return datetime.combine(day, time(hours, minutes), tzinfo=app_timezone())


def local_today() -> date:
    """Today's date in APP_TIMEZONE."""
    return now_utc().astimezone(app_timezone()).date()
