"""
Instructor availability and slot generation.

Weekly rules live in ``instructor_availability`` (dayOfWeek 0=Sunday),
one-off blocked periods in ``time_blocks``, and booked slots in
``appointments``. Times are ``HH:MM`` strings in APP_TIMEZONE.
"""

from datetime import date
from typing import Any, Dict, List, Optional, TypedDict

from boto3.dynamodb.conditions import Attr, Key

from .dynamodb import from_dynamo, query_all, tables

DEFAULT_WORKING_HOURS = {"start": "09:00", "end": "17:00"}

# Statuses that occupy a slot when generating the public slot grid
SLOT_BLOCKING_STATUSES = ("pending", "confirmed")


class TimeSlot(TypedDict, total=False):
    start_time: str
    end_time: str
    is_available: bool
    booking_id: str


class SlotCheck(TypedDict, total=False):
    available: bool
    reason: str


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def minutes_to_time(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


def day_of_week(date_str: str) -> int:
    """Weekday with Sunday as 0."""
    return (date.fromisoformat(date_str).weekday() + 1) % 7


def ranges_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    return start_a < end_b and start_b < end_a


def _block_range(block: Dict[str, Any]) -> tuple[int, int]:
    # Blocks without times cover the whole day
    start = block.get("startTime") or "00:00"
    end = block.get("endTime") or "24:00"
    return time_to_minutes(start), time_to_minutes(end)


def generate_time_slots(
    start_time: str,
    end_time: str,
    duration: int,
    buffer: int,
    appointments: List[Dict[str, Any]],
    blocks: List[Dict[str, Any]],
) -> List[TimeSlot]:
    """
    Walk a working window in steps of ``duration + buffer``.

    A slot is unavailable when it overlaps a pending/confirmed appointment
    (the slot then carries that appointment's id) or a blocked period.
    """
    slots: List[TimeSlot] = []
    current = time_to_minutes(start_time)
    window_end = time_to_minutes(end_time)
    step = max(duration + buffer, 1)

    while current + duration <= window_end:
        slot_end = current + duration
        slot = TimeSlot(
            start_time=minutes_to_time(current),
            end_time=minutes_to_time(slot_end),
            is_available=True,
        )

        for appointment in appointments:
            if appointment.get("status") not in SLOT_BLOCKING_STATUSES:
                continue
            if ranges_overlap(
                current,
                slot_end,
                time_to_minutes(appointment["startTime"]),
                time_to_minutes(appointment["endTime"]),
            ):
                slot["is_available"] = False
                slot["booking_id"] = appointment["appointmentId"]
                break

        if slot["is_available"]:
            for block in blocks:
                block_start, block_end = _block_range(block)
                if ranges_overlap(current, slot_end, block_start, block_end):
                    slot["is_available"] = False
                    break

        slots.append(slot)
        current += step

    return slots


def merge_slots(slots: List[TimeSlot]) -> List[TimeSlot]:
    """Sort by start time and drop duplicates produced by overlapping rules."""
    unique: Dict[str, TimeSlot] = {}
    for slot in slots:
        key = f"{slot['start_time']}-{slot['end_time']}"
        existing = unique.get(key)
        # An unavailable reading of the same slot wins
        if existing is None or (existing["is_available"] and not slot["is_available"]):
            unique[key] = slot
    return sorted(unique.values(), key=lambda s: s["start_time"])


def get_availability_rules(instructor_id: str, day: int) -> List[Dict[str, Any]]:
    items = query_all(
        tables.instructor_availability,
        KeyConditionExpression=Key("instructorId").eq(instructor_id),
        FilterExpression=Attr("dayOfWeek").eq(day) & Attr("isAvailable").eq(True),
    )
    return [from_dynamo(item) for item in items]


def get_appointments_on(instructor_id: str, appointment_date: str) -> List[Dict[str, Any]]:
    items = query_all(
        tables.appointments,
        IndexName="instructorId-appointmentDate-index",
        KeyConditionExpression=Key("instructorId").eq(instructor_id)
        & Key("appointmentDate").eq(appointment_date),
    )
    return [from_dynamo(item) for item in items]


def get_blocks_on(instructor_id: str, block_date: str) -> List[Dict[str, Any]]:
    items = query_all(
        tables.time_blocks,
        KeyConditionExpression=Key("instructorId").eq(instructor_id),
        FilterExpression=Attr("blockDate").eq(block_date),
    )
    return [from_dynamo(item) for item in items]


def check_time_slot_availability(
    instructor_id: str,
    appointment_date: str,
    start_time: str,
    end_time: str,
    exclude_appointment_id: Optional[str] = None,
) -> SlotCheck:
    """
    Final availability check used before an appointment is written.

    Order: existing bookings, weekly rules, working-hours fit, blocked periods.
    """
    start = time_to_minutes(start_time)
    end = time_to_minutes(end_time)

    for appointment in get_appointments_on(instructor_id, appointment_date):
        if appointment.get("status") == "cancelled":
            continue
        if exclude_appointment_id and appointment.get("appointmentId") == exclude_appointment_id:
            continue
        if ranges_overlap(
            start, end, time_to_minutes(appointment["startTime"]), time_to_minutes(appointment["endTime"])
        ):
            return SlotCheck(available=False, reason="Time slot already booked")

    rules = get_availability_rules(instructor_id, day_of_week(appointment_date))
    if not rules:
        return SlotCheck(available=False, reason="Instructor not available on this day")

    fits = any(
        time_to_minutes(rule["startTime"]) <= start and end <= time_to_minutes(rule["endTime"])
        for rule in rules
    )
    if not fits:
        return SlotCheck(available=False, reason="Time slot outside working hours")

    for block in get_blocks_on(instructor_id, appointment_date):
        block_start, block_end = _block_range(block)
        if ranges_overlap(start, end, block_start, block_end):
            return SlotCheck(available=False, reason="Time slot blocked by instructor")

    return SlotCheck(available=True)


def build_instructor_availability(
    instructor: Dict[str, Any], appointment_date: str, duration: int
) -> Dict[str, Any]:
    """Slot grid plus working hours and blocked periods for one instructor on one date."""
    instructor_id = instructor["userId"]
    rules = get_availability_rules(instructor_id, day_of_week(appointment_date))
    appointments = get_appointments_on(instructor_id, appointment_date)
    blocks = get_blocks_on(instructor_id, appointment_date)

    slots: List[TimeSlot] = []
    for rule in rules:
        slots.extend(
            generate_time_slots(
                rule["startTime"],
                rule["endTime"],
                duration,
                int(rule.get("bufferMinutes") or 0),
                appointments,
                blocks,
            )
        )
    slots = merge_slots(slots)

    if rules:
        working_hours = {
            "start": min((r["startTime"] for r in rules), key=time_to_minutes),
            "end": max((r["endTime"] for r in rules), key=time_to_minutes),
        }
    else:
        working_hours = dict(DEFAULT_WORKING_HOURS)

    return {
        "instructor_id": instructor_id,
        "instructor_name": instructor.get("fullName") or instructor.get("nickname") or "",
        "date": appointment_date,
        "slots": slots,
        "total_available": sum(1 for s in slots if s["is_available"]),
        "working_hours": working_hours,
        "blocked_periods": [
            {
                "start_time": b.get("startTime") or "00:00",
                "end_time": b.get("endTime") or "24:00",
                "reason": b.get("reason"),
            }
            for b in blocks
        ],
    }


def get_appointment_type(appointment_type_id: str) -> Optional[Dict[str, Any]]:
    item = tables.appointment_types.get_item(Key={"appointmentTypeId": appointment_type_id}).get("Item")
    return from_dynamo(item) if item else None


def get_appointment(appointment_id: str) -> Optional[Dict[str, Any]]:
    item = tables.appointments.get_item(Key={"appointmentId": appointment_id}).get("Item")
    return from_dynamo(item) if item else None
