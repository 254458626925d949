"""
Input validation utilities.

Validates booking details, contact information, time formats and
multilingual CMS fields.
"""

import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .clock import local_datetime, now_utc
from .errors import AppError, ErrorCode

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[0-9\-\+\(\)\s]+$")
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TEMPLATE_KEY_PATTERN = re.compile(r"^[a-z0-9_]+$")
SECTION_KEY_PATTERN = re.compile(r"^[a-z0-9_-]+$")

MIN_ADVANCE = timedelta(hours=1)
DEFAULT_BOOKING_ADVANCE_DAYS = 30
SUPPORTED_LANGUAGES = ("ko", "en")


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(EMAIL_PATTERN.match(str(email)))


def sanitize_input(value: str) -> str:
    """Strip angle brackets, ``javascript:`` URLs and inline event handlers."""
    value = re.sub(r"[<>]", "", value)
    value = re.sub(r"javascript:", "", value, flags=re.IGNORECASE)
    value = re.sub(r"on\w+=", "", value, flags=re.IGNORECASE)
    return value.strip()


def validate_time(value: Any, field: str) -> str:
    """Require ``HH:MM`` (24h); a trailing ``:SS`` is dropped."""
    text = str(value or "")
    if re.match(r"^\d{2}:\d{2}:\d{2}$", text):
        text = text[:5]
    if not TIME_PATTERN.match(text):
        raise AppError(ErrorCode.INVALID_INPUT, f"{field} must be in HH:MM format", {"field": field})
    return text


def validate_date(value: Any, field: str) -> str:
    """Require a real ``YYYY-MM-DD`` calendar date."""
    text = str(value or "")
    if not DATE_PATTERN.match(text):
        raise AppError(ErrorCode.INVALID_INPUT, f"{field} must be in YYYY-MM-DD format", {"field": field})
    try:
        date.fromisoformat(text)
    except ValueError:
        raise AppError(ErrorCode.INVALID_INPUT, f"{field} is not a valid date", {"field": field})
    return text


def validate_user_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate guest contact details for a booking.

    Requirements:
    - full_name of at least 2 characters
    - a well-formed email
    - phone, when given, made of digits and ``+-() `` only

    Returns:
        Sanitized copy of the details

    Raises:
        AppError: INVALID_INPUT / INVALID_EMAIL / INVALID_PHONE
    """
    if not isinstance(details, dict):
        raise AppError(ErrorCode.INVALID_INPUT, "user_details is required")

    full_name = sanitize_input(str(details.get("full_name") or ""))
    if len(full_name) < 2:
        raise AppError(
            ErrorCode.INVALID_INPUT, "Name must be at least 2 characters", {"field": "full_name"}
        )

    email = str(details.get("email") or "").strip()
    if not is_valid_email(email):
        raise AppError(ErrorCode.INVALID_EMAIL, "A valid email address is required", {"email": email})

    cleaned: Dict[str, Any] = {"full_name": full_name, "email": email.lower()}

    phone = details.get("phone")
    if phone:
        if not PHONE_PATTERN.match(str(phone)):
            raise AppError(ErrorCode.INVALID_PHONE, "Phone number contains invalid characters", {"phone": phone})
        cleaned["phone"] = str(phone).strip()

    if details.get("notes"):
        cleaned["notes"] = sanitize_input(str(details["notes"]))

    return cleaned


def validate_meeting(meeting_type: Optional[str], meeting_location: Optional[str]) -> None:
    if meeting_type not in ("online", "offline", "hybrid"):
        raise AppError(
            ErrorCode.INVALID_INPUT,
            "meeting_type must be one of online, offline, hybrid",
            {"field": "meeting_type"},
        )
    if meeting_type == "offline" and not (meeting_location or "").strip():
        raise AppError(
            ErrorCode.INVALID_INPUT,
            "meeting_location is required for offline meetings",
            {"field": "meeting_location"},
        )


def validate_booking_time(
    appointment_date: str,
    start_time: str,
    booking_advance_days: int = DEFAULT_BOOKING_ADVANCE_DAYS,
    now: Optional[datetime] = None,
) -> None:
    """
    Check a requested slot start against booking windows.

    The slot must not be in the past, must start at least one hour from now
    and no more than ``booking_advance_days`` ahead.
    """
    now = now or now_utc()
    start = local_datetime(appointment_date, start_time)
    if start <= now:
        raise AppError(ErrorCode.INVALID_INPUT, "Cannot book a time in the past")
    if start - now < MIN_ADVANCE:
        raise AppError(ErrorCode.INVALID_INPUT, "Appointments must be booked at least 1 hour in advance")
    if start - now > timedelta(days=booking_advance_days):
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"Appointments can only be booked up to {booking_advance_days} days in advance",
        )


def validate_choice(value: Any, allowed: Iterable[str], field: str) -> str:
    allowed = list(allowed)
    if value not in allowed:
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"{field} must be one of {', '.join(allowed)}",
            {"field": field, "value": value},
        )
    return str(value)


def validate_multilingual_text(value: Any, field: str) -> Dict[str, str]:
    """Require a ``{ko, en}`` object with both languages non-empty."""
    if not isinstance(value, dict):
        raise AppError(ErrorCode.INVALID_INPUT, f"{field} must be an object with ko and en", {"field": field})
    missing = [lang for lang in SUPPORTED_LANGUAGES if not str(value.get(lang) or "").strip()]
    if missing:
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"{field} is missing translations",
            {"field": field, "missingLanguages": missing},
        )
    return {lang: str(value[lang]).strip() for lang in SUPPORTED_LANGUAGES}


def validate_key(value: Any, pattern: "re.Pattern[str]", field: str, max_length: int = 100) -> str:
    text = str(value or "")
    if not text or len(text) > max_length or not pattern.match(text):
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"{field} must match {pattern.pattern} and be at most {max_length} characters",
            {"field": field},
        )
    return text


def require_fields(data: Dict[str, Any], fields: Iterable[str]) -> List[str]:
    """Names of ``fields`` that are missing or empty in ``data``."""
    return [name for name in fields if data.get(name) in (None, "", [])]


def validate_timezone(value: Any, field: str = "timezone") -> str:
    """Require an IANA time zone name such as ``Asia/Seoul``."""
    name = str(value or "")
    try:
        if not name:
            raise ValueError(name)
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"{field} must be an IANA time zone name",
            {"field": field, "value": value},
        )
    return name


def parse_int(value: Any, field: str, default: int = 0) -> int:
    """Integer argument; missing values give ``default``, anything non-numeric is INVALID_INPUT."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise AppError(ErrorCode.INVALID_INPUT, f"{field} must be an integer", {"field": field, "value": value})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise AppError(ErrorCode.INVALID_INPUT, f"{field} must be an integer", {"field": field, "value": value})
