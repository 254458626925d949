"""
Appointment lifecycle Lambda handlers.

Implements:
- getAppointment / listMyAppointments
- confirmAppointment: pending -> confirmed (instructor or admin)
- cancelAppointment: participants or admin
- rescheduleAppointment: move to a new free slot, re-queue reminders
- completeAppointment / markNoShow (instructor or admin)
- getAppointmentCalendar: .ics export for participants

Every status change notifies both participants.
"""

import base64
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Key

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.appsync_types import get_argument, get_input  # type: ignore[import-not-found]
    from utils.auth import is_admin_identity, require_appointment_access, require_caller_identity  # type: ignore[import-not-found]
    from utils.clock import now_iso  # type: ignore[import-not-found]
    from utils.dynamodb import build_update_expression, from_dynamo, query_all, tables  # type: ignore[import-not-found]
    from utils.errors import AppError, ErrorCode  # type: ignore[import-not-found]
    from utils.ics import build_appointment_calendar, calendar_filename  # type: ignore[import-not-found]
    from utils.identity import IdentityData, get_identity_service  # type: ignore[import-not-found]
    from utils.ids import ensure_appointment_id  # type: ignore[import-not-found]
    from utils.logging import get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.notifications import (  # type: ignore[import-not-found]
        cancel_pending_notifications,
        schedule_reminders,
        send_lifecycle_notification,
    )
    from utils.responses import build_appointment_response  # type: ignore[import-not-found]
    from utils.scheduling import check_time_slot_availability, get_appointment, get_appointment_type, minutes_to_time, time_to_minutes  # type: ignore[import-not-found]
    from utils.validation import sanitize_input, validate_booking_time, validate_date, validate_time  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.appsync_types import get_argument, get_input
    from ..utils.auth import is_admin_identity, require_appointment_access, require_caller_identity
    from ..utils.clock import now_iso
    from ..utils.dynamodb import build_update_expression, from_dynamo, query_all, tables
    from ..utils.errors import AppError, ErrorCode
    from ..utils.ics import build_appointment_calendar, calendar_filename
    from ..utils.identity import IdentityData, get_identity_service
    from ..utils.ids import ensure_appointment_id
    from ..utils.logging import get_correlation_id, get_logger
    from ..utils.notifications import (
        cancel_pending_notifications,
        schedule_reminders,
        send_lifecycle_notification,
    )
    from ..utils.responses import build_appointment_response
    from ..utils.scheduling import (
        check_time_slot_availability,
        get_appointment,
        get_appointment_type,
        minutes_to_time,
        time_to_minutes,
    )
    from ..utils.validation import sanitize_input, validate_booking_time, validate_date, validate_time

APPOINTMENT_STATUSES = ["pending", "confirmed", "completed", "cancelled", "no_show"]
FINAL_STATUSES = {"completed", "cancelled", "no_show"}


def _load_for_caller(event: Dict[str, Any]) -> tuple[Dict[str, Any], IdentityData, bool]:
    identity = require_caller_identity(event)
    appointment_id = ensure_appointment_id(get_argument(event, "appointmentId"))
    if not appointment_id:
        raise AppError(ErrorCode.INVALID_INPUT, "appointmentId is required")
    appointment = get_appointment(appointment_id)
    if appointment is None:
        raise AppError(ErrorCode.NOT_FOUND, f"Appointment {appointment_id} not found")
    admin = is_admin_identity(event, identity)
    require_appointment_access(identity["userId"], appointment, admin)
    return appointment, identity, admin


def _participants(appointment: Dict[str, Any]) -> tuple[Dict[str, Any], Dict[str, Any]]:
    service = get_identity_service()
    user = service.require_identity_by_id(appointment["userId"])["profile"]
    instructor = service.require_identity_by_id(appointment["instructorId"])["profile"]
    return user, instructor


def _update(appointment_id: str, fields: Dict[str, Any], expected_status: Optional[List[str]] = None) -> Dict[str, Any]:
    fields = {**fields, "updatedAt": now_iso()}
    expression, names, values = build_update_expression(fields)
    kwargs: Dict[str, Any] = {}
    if expected_status:
        placeholders = []
        for index, status in enumerate(expected_status):
            values[f":expected{index}"] = status
            placeholders.append(f":expected{index}")
        names["#currentStatus"] = "status"
        kwargs["ConditionExpression"] = f"#currentStatus IN ({', '.join(placeholders)})"
    try:
        response = tables.appointments.update_item(
            Key={"appointmentId": appointment_id},
            UpdateExpression=expression,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
            **kwargs,
        )
    except tables.appointments.meta.client.exceptions.ConditionalCheckFailedException:
        raise AppError(ErrorCode.CONFLICT, "Appointment status changed, please reload")
    return from_dynamo(response["Attributes"])  # type: ignore[no-any-return]


def _notify(notification_type: str, appointment: Dict[str, Any], logger: Any, extra: Optional[Dict[str, Any]] = None) -> None:
    """Lifecycle notifications never fail the status change itself."""
    try:
        user, instructor = _participants(appointment)
        send_lifecycle_notification(notification_type, appointment, user, instructor, extra)
    except Exception as e:
        logger.error(
            "Failed to send appointment notification",
            appointment_id=appointment["appointmentId"],
            notification_type=notification_type,
            error=str(e),
        )


def get_appointment_details(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL query: getAppointment(appointmentId)."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        appointment, _, _ = _load_for_caller(event)
        return dict(build_appointment_response(appointment))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to get appointment", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to get appointment")


def list_my_appointments(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """
    GraphQL query: listMyAppointments(role: user|instructor, status, fromDate)

    Sorted by date and start time.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = require_caller_identity(event)
        role = get_argument(event, "role") or "user"
        status = get_argument(event, "status")
        from_date = get_argument(event, "fromDate")

        if role == "instructor":
            condition = Key("instructorId").eq(identity["userId"])
            if from_date:
                condition = condition & Key("appointmentDate").gte(validate_date(from_date, "fromDate"))
            items = query_all(
                tables.appointments,
                IndexName="instructorId-appointmentDate-index",
                KeyConditionExpression=condition,
            )
        else:
            items = query_all(
                tables.appointments,
                IndexName="userId-index",
                KeyConditionExpression=Key("userId").eq(identity["userId"]),
            )
            if from_date:
                items = [i for i in items if i.get("appointmentDate", "") >= from_date]

        if status:
            items = [i for i in items if i.get("status") == status]
        items.sort(key=lambda i: (i.get("appointmentDate", ""), i.get("startTime", "")))
        return [dict(build_appointment_response(from_dynamo(i))) for i in items]

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to list appointments", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to list appointments")


def _require_instructor_or_admin(appointment: Dict[str, Any], identity: IdentityData, admin: bool) -> None:
    if not admin and appointment.get("instructorId") != identity["userId"]:
        raise AppError(ErrorCode.FORBIDDEN, "Only the instructor or an admin can do this")


def confirm_appointment(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL mutation: confirmAppointment(appointmentId). Pending appointments only."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        appointment, identity, admin = _load_for_caller(event)
        _require_instructor_or_admin(appointment, identity, admin)
        if appointment.get("status") != "pending":
            raise AppError(ErrorCode.CONFLICT, f"Cannot confirm an appointment that is {appointment.get('status')}")

        updated = _update(
            appointment["appointmentId"],
            {"status": "confirmed", "confirmedAt": now_iso(), "confirmedBy": identity["userId"]},
            ["pending"],
        )
        logger.info("Appointment confirmed", appointment_id=updated["appointmentId"])
        _notify("appointment_confirmed", updated, logger)
        return dict(build_appointment_response(updated))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to confirm appointment", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to confirm appointment")


def cancel_appointment(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL mutation: cancelAppointment(appointmentId, reason)

    Queued reminders for the appointment are cancelled as well.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        appointment, identity, _ = _load_for_caller(event)
        if appointment.get("status") in FINAL_STATUSES:
            raise AppError(ErrorCode.CONFLICT, f"Cannot cancel an appointment that is {appointment.get('status')}")

        reason = sanitize_input(str(get_argument(event, "reason") or ""))[:500]
        updated = _update(
            appointment["appointmentId"],
            {
                "status": "cancelled",
                "cancellationReason": reason,
                "cancelledBy": identity["userId"],
                "cancelledAt": now_iso(),
            },
            ["pending", "confirmed"],
        )
        cancelled = cancel_pending_notifications(updated["appointmentId"])
        logger.info("Appointment cancelled", appointment_id=updated["appointmentId"], reminders_cancelled=cancelled)
        _notify("appointment_cancelled", updated, logger)
        return dict(build_appointment_response(updated))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to cancel appointment", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to cancel appointment")


def reschedule_appointment(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL mutation: rescheduleAppointment(appointmentId, input: {newDate, newStartTime, reason})

    The appointment keeps its duration; the new slot goes through the same
    booking-window and availability checks as a fresh booking.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        appointment, _, _ = _load_for_caller(event)
        if appointment.get("status") in FINAL_STATUSES:
            raise AppError(ErrorCode.CONFLICT, f"Cannot reschedule an appointment that is {appointment.get('status')}")

        payload = get_input(event)
        new_date = validate_date(payload.get("newDate"), "newDate")
        new_start = validate_time(payload.get("newStartTime"), "newStartTime")
        duration = int(appointment.get("durationMinutes") or 60)
        new_end = minutes_to_time(time_to_minutes(new_start) + duration)

        appointment_type = get_appointment_type(appointment.get("appointmentTypeId", "")) or {}
        validate_booking_time(new_date, new_start, int(appointment_type.get("bookingAdvanceDays") or 30))
        check = check_time_slot_availability(
            appointment["instructorId"],
            new_date,
            new_start,
            new_end,
            exclude_appointment_id=appointment["appointmentId"],
        )
        if not check["available"]:
            raise AppError(ErrorCode.SLOT_UNAVAILABLE, check.get("reason", "Time slot unavailable"), {"reason": check.get("reason")})

        updated = _update(
            appointment["appointmentId"],
            {
                "appointmentDate": new_date,
                "startTime": new_start,
                "endTime": new_end,
                "previousDate": appointment["appointmentDate"],
                "previousStartTime": appointment["startTime"],
                "rescheduleReason": sanitize_input(str(payload.get("reason") or ""))[:500],
                "reminderSent": False,
            },
            ["pending", "confirmed"],
        )
        cancel_pending_notifications(updated["appointmentId"])
        logger.info("Appointment rescheduled", appointment_id=updated["appointmentId"], new_date=new_date, new_start=new_start)

        _notify("appointment_rescheduled", updated, logger)
        try:
            user, instructor = _participants(updated)
            schedule_reminders(updated, user, instructor, appointment_type.get("reminderConfig"))
        except Exception as e:
            logger.error("Failed to re-schedule reminders", appointment_id=updated["appointmentId"], error=str(e))
        return dict(build_appointment_response(updated))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to reschedule appointment", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to reschedule appointment")


def _finish(event: Dict[str, Any], status: str, notification_type: str) -> Dict[str, Any]:
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        appointment, identity, admin = _load_for_caller(event)
        _require_instructor_or_admin(appointment, identity, admin)
        if appointment.get("status") not in ("pending", "confirmed"):
            raise AppError(ErrorCode.CONFLICT, f"Cannot mark an appointment that is {appointment.get('status')} as {status}")

        fields: Dict[str, Any] = {"status": status}
        if status == "completed":
            fields["completedAt"] = now_iso()
        notes = get_argument(event, "notes")
        if notes:
            fields["instructorNotes"] = sanitize_input(str(notes))[:2000]

        updated = _update(appointment["appointmentId"], fields, ["pending", "confirmed"])
        cancel_pending_notifications(updated["appointmentId"])
        logger.info("Appointment closed", appointment_id=updated["appointmentId"], status=status)
        _notify(notification_type, updated, logger)
        return dict(build_appointment_response(updated))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to update appointment status", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to update appointment status")


def complete_appointment(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL mutation: completeAppointment(appointmentId, notes)."""
    return _finish(event, "completed", "appointment_completed")


def mark_no_show(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL mutation: markNoShow(appointmentId, notes)."""
    return _finish(event, "no_show", "appointment_no_show")


def get_appointment_calendar(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Export an appointment as an iCalendar file.

    GraphQL query: getAppointmentCalendar(appointmentId)

    Returns:
        { filename, contentType, content (text), contentBase64 }
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        appointment, _, _ = _load_for_caller(event)
        user, instructor = _participants(appointment)
        ics = build_appointment_calendar(appointment, instructor, user)
        return {
            "filename": calendar_filename(appointment),
            "contentType": "text/calendar; charset=utf-8",
            "content": ics.decode("utf-8"),
            "contentBase64": base64.b64encode(ics).decode("ascii"),
        }

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to export appointment calendar", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to export appointment calendar")
