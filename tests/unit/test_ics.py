"""Tests for iCalendar export."""

from datetime import datetime, timezone

import pytest
from icalendar import Calendar

from src.utils.ics import build_appointment_calendar, calendar_filename
from tests.unit.fixtures import make_appointment


@pytest.fixture(autouse=True)
def seoul(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_TIMEZONE", "Asia/Seoul")


def _event(payload: bytes) -> Calendar:
    calendar = Calendar.from_ical(payload)
    events = [c for c in calendar.walk() if c.name == "VEVENT"]
    assert len(events) == 1
    return events[0]


class TestBuildAppointmentCalendar:
    """Tests for build_appointment_calendar."""

    def test_times_are_utc(self) -> None:
        appointment = make_appointment("USER#s", "USER#t", "2025-03-10", "10:00", "11:00")

        event = _event(build_appointment_calendar(appointment))

        assert event.decoded("dtstart") == datetime(2025, 3, 10, 1, 0, tzinfo=timezone.utc)
        assert event.decoded("dtend") == datetime(2025, 3, 10, 2, 0, tzinfo=timezone.utc)

    def test_participants_and_location(self) -> None:
        appointment = make_appointment("USER#s", "USER#t", "2025-03-10", status="confirmed", notes="Bring slides")
        instructor = {"email": "t@example.com", "fullName": "Lee Seonsaeng"}
        user = {"email": "s@example.com", "nickname": "minji"}

        event = _event(build_appointment_calendar(appointment, instructor, user))

        assert str(event["status"]) == "CONFIRMED"
        assert str(event["location"]) == "https://meet.example.com/room"
        assert str(event["organizer"]) == "MAILTO:t@example.com"
        assert str(event["attendee"]) == "MAILTO:s@example.com"
        assert "Notes: Bring slides" in str(event["description"])
        assert "Instructor: Lee Seonsaeng (t@example.com)" in str(event["description"])

    def test_offline_location_and_cancelled_status(self) -> None:
        appointment = make_appointment(
            "USER#s", "USER#t", "2025-03-10", status="cancelled",
            meetingType="offline", meetingLink=None, meetingLocation="Seoul Office 3F",
        )

        event = _event(build_appointment_calendar(appointment))

        assert str(event["location"]) == "Seoul Office 3F"
        assert str(event["status"]) == "CANCELLED"

    def test_two_reminders(self) -> None:
        appointment = make_appointment("USER#s", "USER#t", "2025-03-10")

        event = _event(build_appointment_calendar(appointment))

        alarms = [c for c in event.subcomponents if c.name == "VALARM"]
        assert len(alarms) == 2
        assert str(event["status"]) == "TENTATIVE"

    def test_filename(self) -> None:
        appointment = {"appointmentId": "APPOINTMENT#3f2a9c1e-0b7d-4e55-9a61-2c4d8e9fab12"}

        assert calendar_filename(appointment) == "appointment-8e9fab12.ics"
