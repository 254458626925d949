"""
Booking session step rules.

A session walks five ordered steps; its ``data`` blob accumulates the
fields each step collects, and ``completed_steps`` records which steps
passed validation.
"""

from typing import Any, Dict, List, Optional

from .errors import AppError, ErrorCode
from .scheduling import minutes_to_time, time_to_minutes
from .validation import (
    require_fields,
    sanitize_input,
    validate_date,
    validate_meeting,
    validate_time,
    validate_user_details,
)

BOOKING_STEPS: List[str] = [
    "instructor_selection",
    "service_selection",
    "date_time_selection",
    "user_details",
    "confirmation",
]

SESSION_TTL_HOURS = 2

REQUIRED_BOOKING_FIELDS = [
    "instructor_id",
    "appointment_type_id",
    "appointment_date",
    "start_time",
    "end_time",
    "duration_minutes",
    "meeting_type",
]

# Keys a client may write into the session data blob
DATA_FIELDS = {
    "instructor_id",
    "appointment_type_id",
    "appointment_date",
    "start_time",
    "end_time",
    "duration_minutes",
    "meeting_type",
    "meeting_location",
    "notes",
    "user_details",
}


def validate_step(step: Any) -> str:
    if step not in BOOKING_STEPS:
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"step must be one of {', '.join(BOOKING_STEPS)}",
            {"field": "step", "value": step},
        )
    return str(step)


def can_enter_step(target: str, completed_steps: List[str]) -> bool:
    """A step is reachable once every step before it has been completed."""
    index = BOOKING_STEPS.index(target)
    return all(step in completed_steps for step in BOOKING_STEPS[:index])


def require_step_reachable(target: str, completed_steps: List[str]) -> None:
    if not can_enter_step(target, completed_steps):
        missing = [s for s in BOOKING_STEPS[: BOOKING_STEPS.index(target)] if s not in completed_steps]
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"Cannot move to {target} before completing earlier steps",
            {"step": target, "missingSteps": missing},
        )


def merge_session_data(current: Dict[str, Any], changes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Shallow merge of client changes; unknown keys and completed_steps are ignored.

    A new start time drops the derived end time, and a new appointment type
    drops both end time and duration, unless the client sends them as well.
    """
    changes = changes or {}
    merged = dict(current)
    for key, value in changes.items():
        if key not in DATA_FIELDS:
            continue
        if isinstance(value, str):
            value = sanitize_input(value)
        merged[key] = value

    stale: List[str] = []
    if merged.get("appointment_type_id") != current.get("appointment_type_id"):
        stale = ["end_time", "duration_minutes"]
    elif merged.get("start_time") != current.get("start_time"):
        stale = ["end_time"]
    for key in stale:
        if key not in changes:
            merged.pop(key, None)

    merged.setdefault("completed_steps", [])
    return merged


def mark_step_completed(data: Dict[str, Any], step: str) -> Dict[str, Any]:
    completed = list(data.get("completed_steps") or [])
    if step not in completed:
        completed.append(step)
    data["completed_steps"] = completed
    return data


def derive_end_time(data: Dict[str, Any], default_duration: Optional[int]) -> None:
    """Keep start_time, end_time and duration_minutes consistent; an explicit end_time wins."""
    start = time_to_minutes(data["start_time"])
    if data.get("end_time"):
        data["duration_minutes"] = time_to_minutes(data["end_time"]) - start
        return
    duration = data.get("duration_minutes") or default_duration
    if duration:
        data["duration_minutes"] = int(duration)
        data["end_time"] = minutes_to_time(start + int(duration))


def validate_step_fields(step: str, data: Dict[str, Any], anonymous: bool) -> Dict[str, Any]:
    """
    Check the fields a step collects before it may be marked completed.

    Returns:
        The data blob with normalized values (times trimmed, details sanitized)
    """
    if step == "instructor_selection":
        _require(data, ["instructor_id"], step)
    elif step == "service_selection":
        _require(data, ["appointment_type_id"], step)
    elif step == "date_time_selection":
        _require(data, ["appointment_date", "start_time"], step)
        data["appointment_date"] = validate_date(data["appointment_date"], "appointment_date")
        data["start_time"] = validate_time(data["start_time"], "start_time")
        if data.get("end_time"):
            data["end_time"] = validate_time(data["end_time"], "end_time")
            if time_to_minutes(data["end_time"]) <= time_to_minutes(data["start_time"]):
                raise AppError(ErrorCode.INVALID_INPUT, "end_time must be after start_time", {"field": "end_time"})
    elif step == "user_details":
        _require(data, ["meeting_type"], step)
        validate_meeting(data.get("meeting_type"), data.get("meeting_location"))
        if anonymous or data.get("user_details"):
            data["user_details"] = validate_user_details(data.get("user_details"))
    elif step == "confirmation":
        missing = require_fields(data, REQUIRED_BOOKING_FIELDS)
        if missing:
            raise AppError(
                ErrorCode.INCOMPLETE_BOOKING,
                "Booking is missing required information",
                {"missingFields": missing},
            )
    return data


def _require(data: Dict[str, Any], fields: List[str], step: str) -> None:
    missing = require_fields(data, fields)
    if missing:
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"Step {step} requires {', '.join(missing)}",
            {"step": step, "missingFields": missing},
        )
