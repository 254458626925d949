"""
iCalendar (.ics) export for appointments.
"""

from datetime import timedelta, timezone
from typing import Any, Dict, Optional

from icalendar import Alarm, Calendar, Event, vCalAddress, vText

from .clock import local_datetime, now_utc
from .ids import strip_prefix

PRODID = "-//AIedulog//Appointment System//EN"
UID_DOMAIN = "aiedulog.com"

ICS_STATUS = {
    "pending": "TENTATIVE",
    "confirmed": "CONFIRMED",
    "completed": "CONFIRMED",
    "cancelled": "CANCELLED",
    "no_show": "CANCELLED",
}


def _address(email: Optional[str], name: Optional[str], role: Optional[str] = None) -> vCalAddress:
    address = vCalAddress(f"MAILTO:{email or ''}")
    if name:
        address.params["cn"] = vText(name)
    if role:
        address.params["role"] = vText(role)
    return address


def _description(
    appointment: Dict[str, Any],
    instructor: Optional[Dict[str, Any]],
) -> str:
    lines = [appointment.get("description") or appointment.get("title") or "Appointment"]
    if appointment.get("notes"):
        lines.append(f"Notes: {appointment['notes']}")
    if instructor:
        name = instructor.get("fullName") or instructor.get("nickname") or ""
        lines.append(f"Instructor: {name} ({instructor.get('email', '')})")
    if appointment.get("meetingLocation"):
        lines.append(f"Location: {appointment['meetingLocation']}")
    if appointment.get("meetingLink"):
        lines.append(f"Meeting link: {appointment['meetingLink']}")
    return "\n".join(lines)


def build_appointment_calendar(
    appointment: Dict[str, Any],
    instructor: Optional[Dict[str, Any]] = None,
    user: Optional[Dict[str, Any]] = None,
) -> bytes:
    """
    Build a single-event VCALENDAR for an appointment.

    Local wall-clock times are converted to UTC; the event carries reminders
    one day and one hour before the start.
    """
    start = local_datetime(appointment["appointmentDate"], appointment["startTime"]).astimezone(
        timezone.utc
    )
    end = local_datetime(appointment["appointmentDate"], appointment["endTime"]).astimezone(
        timezone.utc
    )

    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("method", "PUBLISH")

    event = Event()
    event.add("uid", f"appointment-{strip_prefix(appointment['appointmentId'])}@{UID_DOMAIN}")
    event.add("dtstamp", now_utc())
    event.add("dtstart", start)
    event.add("dtend", end)
    event.add("summary", appointment.get("title") or "Appointment")
    event.add("description", _description(appointment, instructor))

    if appointment.get("meetingType") == "online" and appointment.get("meetingLink"):
        event.add("location", appointment["meetingLink"])
    elif appointment.get("meetingLocation"):
        event.add("location", appointment["meetingLocation"])

    if instructor:
        event.add(
            "organizer",
            _address(instructor.get("email"), instructor.get("fullName") or instructor.get("nickname")),
        )
    if user:
        event.add(
            "attendee",
            _address(user.get("email"), user.get("fullName") or user.get("nickname"), "REQ-PARTICIPANT"),
        )

    event.add("status", ICS_STATUS.get(appointment.get("status", "pending"), "TENTATIVE"))
    event.add("transp", "OPAQUE")

    for offset, label in ((timedelta(days=-1), "tomorrow"), (timedelta(hours=-1), "in 1 hour")):
        alarm = Alarm()
        alarm.add("action", "DISPLAY")
        alarm.add("description", f"Reminder: {event['summary']} {label}")
        alarm.add("trigger", offset)
        event.add_component(alarm)

    cal.add_component(event)
    return cal.to_ical()


def calendar_filename(appointment: Dict[str, Any]) -> str:
    return f"appointment-{strip_prefix(appointment['appointmentId'])[-8:]}.ics"
