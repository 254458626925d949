"""Tests for appointment lifecycle handlers."""

import base64
from typing import Any, Dict
from unittest.mock import patch

import pytest
from boto3.dynamodb.conditions import Key

from src.handlers.appointment_operations import (
    cancel_appointment,
    complete_appointment,
    confirm_appointment,
    get_appointment_calendar,
    get_appointment_details,
    list_my_appointments,
    mark_no_show,
    reschedule_appointment,
)
from src.utils.errors import AppError, ErrorCode
from src.utils.notifications import schedule_reminders
from tests.unit.fixtures import future_date, make_appointment, make_event, make_profile


@pytest.fixture
def appointment(
    dynamodb_tables: Dict[str, Any],
    user_profile: Dict[str, Any],
    instructor_profile: Dict[str, Any],
    appointment_type: Dict[str, Any],
    weekly_availability: Any,
) -> Dict[str, Any]:
    """A pending booking three days out with queued reminders."""
    item = make_appointment(user_profile["userId"], instructor_profile["userId"], future_date(3))
    dynamodb_tables["appointments"].put_item(Item=item)
    schedule_reminders(item, user_profile, instructor_profile)
    return item


def _notifications_for(dynamodb_tables: Dict[str, Any], user_id: str) -> list:
    return dynamodb_tables["notifications"].query(KeyConditionExpression=Key("userId").eq(user_id))["Items"]


def _pending_reminders(dynamodb_tables: Dict[str, Any], appointment_id: str) -> list:
    items = dynamodb_tables["notifications"].scan()["Items"]
    return [i for i in items if i.get("appointmentId") == appointment_id and i["deliveryStatus"] == "pending"]


class TestReadAppointments:
    """Tests for get/list."""

    def test_participant_reads(
        self, appointment: Dict[str, Any], user_profile: Dict[str, Any], lambda_context: Any
    ) -> None:
        result = get_appointment_details(
            make_event({"appointmentId": appointment["appointmentId"]}, user_profile), lambda_context
        )

        assert result["appointmentId"] == appointment["appointmentId"]
        assert result["reference"].startswith("APT-")

    def test_outsider_forbidden(
        self, appointment: Dict[str, Any], dynamodb_tables: Dict[str, Any], lambda_context: Any
    ) -> None:
        outsider = make_profile("outsider")
        dynamodb_tables["user_profiles"].put_item(Item=outsider)

        with pytest.raises(AppError) as exc_info:
            get_appointment_details(
                make_event({"appointmentId": appointment["appointmentId"]}, outsider), lambda_context
            )

        assert exc_info.value.error_code == ErrorCode.FORBIDDEN

    def test_admin_reads_any(
        self, appointment: Dict[str, Any], admin_profile: Dict[str, Any], lambda_context: Any
    ) -> None:
        result = get_appointment_details(
            make_event({"appointmentId": appointment["appointmentId"]}, admin_profile), lambda_context
        )

        assert result["status"] == "pending"

    def test_missing_appointment(self, dynamodb_tables: Dict[str, Any], user_profile: Dict[str, Any], lambda_context: Any) -> None:
        with pytest.raises(AppError) as exc_info:
            get_appointment_details(make_event({"appointmentId": "nope"}, user_profile), lambda_context)

        assert exc_info.value.error_code == ErrorCode.NOT_FOUND

    def test_anonymous_rejected(self, appointment: Dict[str, Any], lambda_context: Any) -> None:
        with pytest.raises(AppError) as exc_info:
            get_appointment_details(make_event({"appointmentId": appointment["appointmentId"]}), lambda_context)

        assert exc_info.value.error_code == ErrorCode.UNAUTHORIZED

    def test_list_as_user_and_instructor(
        self,
        appointment: Dict[str, Any],
        dynamodb_tables: Dict[str, Any],
        user_profile: Dict[str, Any],
        instructor_profile: Dict[str, Any],
        lambda_context: Any,
    ) -> None:
        earlier = make_appointment(
            user_profile["userId"], instructor_profile["userId"], future_date(1), status="confirmed"
        )
        dynamodb_tables["appointments"].put_item(Item=earlier)

        mine = list_my_appointments(make_event({}, user_profile), lambda_context)
        teaching = list_my_appointments(
            make_event({"role": "instructor", "status": "pending"}, instructor_profile), lambda_context
        )
        upcoming = list_my_appointments(
            make_event({"role": "instructor", "fromDate": future_date(2)}, instructor_profile), lambda_context
        )

        assert [a["appointmentId"] for a in mine] == [earlier["appointmentId"], appointment["appointmentId"]]
        assert [a["appointmentId"] for a in teaching] == [appointment["appointmentId"]]
        assert [a["appointmentId"] for a in upcoming] == [appointment["appointmentId"]]

    def test_storage_failure_is_internal_error(
        self, dynamodb_tables: Dict[str, Any], user_profile: Dict[str, Any], lambda_context: Any
    ) -> None:
        with patch("src.handlers.appointment_operations.query_all", side_effect=RuntimeError("throttled")):
            with pytest.raises(AppError) as exc_info:
                list_my_appointments(make_event({}, user_profile), lambda_context)

        assert exc_info.value.error_code == ErrorCode.INTERNAL_ERROR
        assert exc_info.value.message == "Failed to list appointments"


class TestStatusChanges:
    """Tests for confirm/cancel/complete/no-show."""

    def test_instructor_confirms(
        self,
        appointment: Dict[str, Any],
        dynamodb_tables: Dict[str, Any],
        user_profile: Dict[str, Any],
        instructor_profile: Dict[str, Any],
        lambda_context: Any,
    ) -> None:
        result = confirm_appointment(
            make_event({"appointmentId": appointment["appointmentId"]}, instructor_profile), lambda_context
        )

        assert result["status"] == "confirmed"
        assert result["confirmedAt"]
        types = [n["type"] for n in _notifications_for(dynamodb_tables, user_profile["userId"])]
        assert "appointment_confirmed" in types

    def test_user_cannot_confirm(
        self, appointment: Dict[str, Any], user_profile: Dict[str, Any], lambda_context: Any
    ) -> None:
        with pytest.raises(AppError) as exc_info:
            confirm_appointment(make_event({"appointmentId": appointment["appointmentId"]}, user_profile), lambda_context)

        assert exc_info.value.error_code == ErrorCode.FORBIDDEN

    def test_confirm_twice_conflicts(
        self, appointment: Dict[str, Any], instructor_profile: Dict[str, Any], lambda_context: Any
    ) -> None:
        event = make_event({"appointmentId": appointment["appointmentId"]}, instructor_profile)
        confirm_appointment(event, lambda_context)

        with pytest.raises(AppError) as exc_info:
            confirm_appointment(event, lambda_context)

        assert exc_info.value.error_code == ErrorCode.CONFLICT

    def test_user_cancels_and_reminders_are_cancelled(
        self,
        appointment: Dict[str, Any],
        dynamodb_tables: Dict[str, Any],
        user_profile: Dict[str, Any],
        lambda_context: Any,
    ) -> None:
        assert len(_pending_reminders(dynamodb_tables, appointment["appointmentId"])) == 4

        result = cancel_appointment(
            make_event({"appointmentId": appointment["appointmentId"], "reason": "<b>Sick</b>"}, user_profile),
            lambda_context,
        )

        assert result["status"] == "cancelled"
        assert result["cancellationReason"] == "bSick/b"
        assert result["cancelledBy"] == user_profile["userId"]
        assert _pending_reminders(dynamodb_tables, appointment["appointmentId"]) == []

    def test_cannot_cancel_completed(
        self,
        appointment: Dict[str, Any],
        instructor_profile: Dict[str, Any],
        user_profile: Dict[str, Any],
        lambda_context: Any,
    ) -> None:
        complete_appointment(
            make_event({"appointmentId": appointment["appointmentId"]}, instructor_profile), lambda_context
        )

        with pytest.raises(AppError) as exc_info:
            cancel_appointment(make_event({"appointmentId": appointment["appointmentId"]}, user_profile), lambda_context)

        assert exc_info.value.error_code == ErrorCode.CONFLICT

    def test_complete_with_notes(
        self, appointment: Dict[str, Any], dynamodb_tables: Dict[str, Any], instructor_profile: Dict[str, Any], lambda_context: Any
    ) -> None:
        result = complete_appointment(
            make_event({"appointmentId": appointment["appointmentId"], "notes": "Great progress"}, instructor_profile),
            lambda_context,
        )

        assert result["status"] == "completed"
        stored = dynamodb_tables["appointments"].get_item(Key={"appointmentId": appointment["appointmentId"]})["Item"]
        assert stored["instructorNotes"] == "Great progress"
        assert "completedAt" in stored

    def test_admin_marks_no_show(
        self, appointment: Dict[str, Any], admin_profile: Dict[str, Any], lambda_context: Any
    ) -> None:
        result = mark_no_show(make_event({"appointmentId": appointment["appointmentId"]}, admin_profile), lambda_context)

        assert result["status"] == "no_show"


class TestReschedule:
    """Tests for reschedule_appointment."""

    def test_move_to_free_slot(
        self,
        appointment: Dict[str, Any],
        dynamodb_tables: Dict[str, Any],
        user_profile: Dict[str, Any],
        lambda_context: Any,
    ) -> None:
        new_date = future_date(5)
        event = make_event(
            {
                "appointmentId": appointment["appointmentId"],
                "input": {"newDate": new_date, "newStartTime": "15:00", "reason": "Exam week"},
            },
            user_profile,
        )

        result = reschedule_appointment(event, lambda_context)

        assert (result["appointmentDate"], result["startTime"], result["endTime"]) == (new_date, "15:00", "16:00")
        stored = dynamodb_tables["appointments"].get_item(Key={"appointmentId": appointment["appointmentId"]})["Item"]
        assert stored["previousDate"] == appointment["appointmentDate"]
        assert stored["previousStartTime"] == "10:00"
        # Old reminders cancelled, fresh ones queued for the new time
        pending = _pending_reminders(dynamodb_tables, appointment["appointmentId"])
        assert len(pending) == 4
        assert all(p["templateData"]["appointment_time"] in ("오후 3:00", "3:00 PM") for p in pending)

    def test_same_slot_shift_ignores_itself(
        self, appointment: Dict[str, Any], user_profile: Dict[str, Any], lambda_context: Any
    ) -> None:
        """Moving by 30 minutes overlaps only the appointment being moved."""
        event = make_event(
            {
                "appointmentId": appointment["appointmentId"],
                "input": {"newDate": appointment["appointmentDate"], "newStartTime": "10:30"},
            },
            user_profile,
        )

        assert reschedule_appointment(event, lambda_context)["endTime"] == "11:30"

    def test_conflicting_slot(
        self,
        appointment: Dict[str, Any],
        dynamodb_tables: Dict[str, Any],
        instructor_profile: Dict[str, Any],
        user_profile: Dict[str, Any],
        lambda_context: Any,
    ) -> None:
        day = future_date(4)
        dynamodb_tables["appointments"].put_item(
            Item=make_appointment("USER#other", instructor_profile["userId"], day, "14:00", "15:00", "confirmed")
        )
        event = make_event(
            {"appointmentId": appointment["appointmentId"], "input": {"newDate": day, "newStartTime": "14:00"}},
            user_profile,
        )

        with pytest.raises(AppError) as exc_info:
            reschedule_appointment(event, lambda_context)

        assert exc_info.value.error_code == ErrorCode.SLOT_UNAVAILABLE

    def test_beyond_booking_window(
        self, appointment: Dict[str, Any], user_profile: Dict[str, Any], lambda_context: Any
    ) -> None:
        event = make_event(
            {"appointmentId": appointment["appointmentId"], "input": {"newDate": future_date(40), "newStartTime": "10:00"}},
            user_profile,
        )

        with pytest.raises(AppError, match="30 days"):
            reschedule_appointment(event, lambda_context)


class TestCalendarExport:
    def test_ics_for_participant(
        self, appointment: Dict[str, Any], user_profile: Dict[str, Any], lambda_context: Any
    ) -> None:
        result = get_appointment_calendar(
            make_event({"appointmentId": appointment["appointmentId"]}, user_profile), lambda_context
        )

        assert result["filename"].endswith(".ics")
        assert result["contentType"].startswith("text/calendar")
        assert "BEGIN:VEVENT" in result["content"]
        assert base64.b64decode(result["contentBase64"]).decode("utf-8") == result["content"]
