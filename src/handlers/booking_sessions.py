"""
Booking session Lambda handlers.

Implements:
- createBookingSession: Start a multi-step booking (anonymous or signed in)
- getBookingSession / listBookingSessions: Resume an active session
- updateBookingSession: Merge step data, complete steps, move between steps
- deleteBookingSession: Abandon a session
- completeBookingSession: Turn a finished session into a pending appointment

Signed-in callers own sessions through their user id. Anonymous callers must
present the session token issued at creation.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Attr, Key

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.appsync_types import get_argument, get_input  # type: ignore[import-not-found]
    from utils.auth import get_caller_identity  # type: ignore[import-not-found]
    from utils.booking import (  # type: ignore[import-not-found]
        BOOKING_STEPS,
        REQUIRED_BOOKING_FIELDS,
        SESSION_TTL_HOURS,
        derive_end_time,
        mark_step_completed,
        merge_session_data,
        require_step_reachable,
        validate_step,
        validate_step_fields,
    )
    from utils.clock import now_utc, parse_iso  # type: ignore[import-not-found]
    from utils.dynamodb import build_update_expression, from_dynamo, query_all, tables, to_dynamo  # type: ignore[import-not-found]
    from utils.errors import AppError, ErrorCode  # type: ignore[import-not-found]
    from utils.identity import IdentityData, get_identity_service  # type: ignore[import-not-found]
    from utils.ids import ensure_session_id, new_id  # type: ignore[import-not-found]
    from utils.logging import get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.notifications import schedule_reminders, send_booking_confirmation  # type: ignore[import-not-found]
    from utils.responses import build_appointment_response, build_booking_session_response  # type: ignore[import-not-found]
    from utils.scheduling import check_time_slot_availability, get_appointment_type  # type: ignore[import-not-found]
    from utils.tokens import compare_tokens, generate_secure_token, validate_token_format  # type: ignore[import-not-found]
    from utils.validation import require_fields, validate_booking_time, validate_meeting, validate_user_details  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.appsync_types import get_argument, get_input
    from ..utils.auth import get_caller_identity
    from ..utils.booking import (
        BOOKING_STEPS,
        REQUIRED_BOOKING_FIELDS,
        SESSION_TTL_HOURS,
        derive_end_time,
        mark_step_completed,
        merge_session_data,
        require_step_reachable,
        validate_step,
        validate_step_fields,
    )
    from ..utils.clock import now_utc, parse_iso
    from ..utils.dynamodb import build_update_expression, from_dynamo, query_all, tables, to_dynamo
    from ..utils.errors import AppError, ErrorCode
    from ..utils.identity import IdentityData, get_identity_service
    from ..utils.ids import ensure_session_id, new_id
    from ..utils.logging import get_correlation_id, get_logger
    from ..utils.notifications import schedule_reminders, send_booking_confirmation
    from ..utils.responses import build_appointment_response, build_booking_session_response
    from ..utils.scheduling import check_time_slot_availability, get_appointment_type
    from ..utils.tokens import compare_tokens, generate_secure_token, validate_token_format
    from ..utils.validation import require_fields, validate_booking_time, validate_meeting, validate_user_details

DEFAULT_BOOKING_ADVANCE_DAYS = 30


def _expiry_fields() -> Dict[str, Any]:
    expires = now_utc() + timedelta(hours=SESSION_TTL_HOURS)
    return {"expiresAt": expires.isoformat(), "ttl": int(expires.timestamp())}


def _is_active(session: Dict[str, Any]) -> bool:
    expires_at = parse_iso(session.get("expiresAt"))
    return expires_at is not None and expires_at > now_utc()


def _check_token(token: Optional[str]) -> str:
    if not token:
        raise AppError(ErrorCode.INVALID_INPUT, "sessionToken is required for anonymous sessions")
    check = validate_token_format(token)
    if check["expired"]:
        raise AppError(ErrorCode.SESSION_EXPIRED, "Booking session has expired")
    if not check["valid"]:
        raise AppError(ErrorCode.INVALID_TOKEN, "Invalid session token")
    return token


def _load_session(event: Dict[str, Any], identity: Optional[IdentityData]) -> Dict[str, Any]:
    """Fetch an active session the caller owns; anything else reads as NOT_FOUND."""
    session_id = ensure_session_id(get_argument(event, "sessionId"))
    if not session_id:
        raise AppError(ErrorCode.INVALID_INPUT, "sessionId is required")

    token = None if identity else _check_token(get_argument(event, "sessionToken"))

    item = tables.booking_sessions.get_item(Key={"sessionId": session_id}).get("Item")
    if not item or not _is_active(item):
        raise AppError(ErrorCode.NOT_FOUND, "Booking session not found or expired")

    if identity:
        owned = item.get("userId") == identity["userId"]
    else:
        owned = "userId" not in item and compare_tokens(item.get("sessionToken"), token)
    if not owned:
        raise AppError(ErrorCode.NOT_FOUND, "Booking session not found or expired")

    return item


def create_booking_session(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Start a booking session.

    GraphQL mutation: createBookingSession(input: { initialStep, instructorId, appointmentTypeId })

    Prefilled instructor/service choices count as completed steps, so a client
    may open the flow directly at a later step.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = get_caller_identity(event, required=False)
        payload = get_input(event)
        initial_step = validate_step(payload.get("initialStep") or BOOKING_STEPS[0])

        data: Dict[str, Any] = {"completed_steps": []}
        if payload.get("instructorId"):
            data["instructor_id"] = payload["instructorId"]
            mark_step_completed(data, "instructor_selection")
            if payload.get("appointmentTypeId"):
                data["appointment_type_id"] = payload["appointmentTypeId"]
                mark_step_completed(data, "service_selection")
        require_step_reachable(initial_step, data["completed_steps"])

        timestamp = now_utc().isoformat()
        session: Dict[str, Any] = {
            "sessionId": new_id("SESSION"),
            "sessionToken": generate_secure_token(),
            "currentStep": initial_step,
            "data": data,
            "createdAt": timestamp,
            "updatedAt": timestamp,
            **_expiry_fields(),
        }
        if identity:
            session["userId"] = identity["userId"]

        tables.booking_sessions.put_item(Item=to_dynamo(session))
        logger.info(
            "Booking session created",
            session_id=session["sessionId"],
            anonymous=identity is None,
            step=initial_step,
        )
        return dict(build_booking_session_response(session))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to create booking session", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to create booking session")


def get_booking_session(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL query: getBookingSession(sessionId, sessionToken)."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = get_caller_identity(event, required=False)
        return dict(build_booking_session_response(_load_session(event, identity)))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to get booking session", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to get booking session")


def list_booking_sessions(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """
    List active sessions for the caller.

    GraphQL query: listBookingSessions(sessionToken)

    Signed-in callers get every active session of theirs; anonymous callers
    get the single session their token belongs to.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = get_caller_identity(event, required=False)

        if identity:
            items = query_all(
                tables.booking_sessions,
                IndexName="userId-index",
                KeyConditionExpression=Key("userId").eq(identity["userId"]),
            )
        else:
            token = _check_token(get_argument(event, "sessionToken"))
            items = query_all(
                tables.booking_sessions,
                IndexName="sessionToken-index",
                KeyConditionExpression=Key("sessionToken").eq(token),
                FilterExpression=Attr("userId").not_exists(),
            )

        active = [item for item in items if _is_active(item)]
        active.sort(key=lambda s: s.get("updatedAt", ""), reverse=True)
        logger.info("Listed booking sessions", count=len(active), anonymous=identity is None)
        return [dict(build_booking_session_response(item)) for item in active]

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to list booking sessions", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to list booking sessions")


def update_booking_session(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Advance a session.

    GraphQL mutation: updateBookingSession(sessionId, sessionToken, input: { step, data, completeStep })

    ``completeStep`` validates and completes the current step after ``data``
    is merged; ``step`` then moves the session, which is only allowed once
    every earlier step is complete. Each update extends the expiry.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = get_caller_identity(event, required=False)
        session = _load_session(event, identity)
        payload = get_input(event)
        anonymous = "userId" not in session

        data = merge_session_data(from_dynamo(session.get("data") or {}), payload.get("data"))
        current_step = session["currentStep"]

        if payload.get("completeStep"):
            data = validate_step_fields(current_step, data, anonymous)
            if current_step == "date_time_selection":
                _check_requested_slot(data)
            mark_step_completed(data, current_step)

        next_step = current_step
        if payload.get("step"):
            next_step = validate_step(payload["step"])
            require_step_reachable(next_step, data["completed_steps"])

        fields = {
            "currentStep": next_step,
            "data": data,
            "updatedAt": now_utc().isoformat(),
            **_expiry_fields(),
        }
        expression, names, values = build_update_expression(fields)
        response = tables.booking_sessions.update_item(
            Key={"sessionId": session["sessionId"]},
            UpdateExpression=expression,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ConditionExpression="attribute_exists(sessionId)",
            ReturnValues="ALL_NEW",
        )
        logger.info(
            "Booking session updated",
            session_id=session["sessionId"],
            step=next_step,
            completed_steps=data["completed_steps"],
        )
        return dict(build_booking_session_response(response["Attributes"]))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to update booking session", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to update booking session")


def delete_booking_session(event: Dict[str, Any], context: Any) -> bool:
    """GraphQL mutation: deleteBookingSession(sessionId, sessionToken)."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = get_caller_identity(event, required=False)
        session = _load_session(event, identity)
        tables.booking_sessions.delete_item(Key={"sessionId": session["sessionId"]})
        logger.info("Booking session deleted", session_id=session["sessionId"])
        return True

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to delete booking session", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to delete booking session")


def _require_active_type(data: Dict[str, Any]) -> Dict[str, Any]:
    appointment_type = get_appointment_type(data["appointment_type_id"])
    if not appointment_type or not appointment_type.get("isActive", True):
        raise AppError(ErrorCode.NOT_FOUND, "Appointment type not found or inactive")
    if appointment_type.get("instructorId") != data["instructor_id"]:
        raise AppError(ErrorCode.INVALID_INPUT, "Appointment type does not belong to this instructor")
    return appointment_type


def _check_requested_slot(data: Dict[str, Any]) -> Dict[str, Any]:
    """Derive end time from the service, then check booking window and availability."""
    appointment_type = _require_active_type(data)
    derive_end_time(data, appointment_type.get("durationMinutes"))
    validate_booking_time(
        data["appointment_date"],
        data["start_time"],
        int(appointment_type.get("bookingAdvanceDays") or DEFAULT_BOOKING_ADVANCE_DAYS),
    )
    check = check_time_slot_availability(
        data["instructor_id"], data["appointment_date"], data["start_time"], data["end_time"]
    )
    if not check["available"]:
        raise AppError(ErrorCode.SLOT_UNAVAILABLE, check.get("reason", "Time slot unavailable"), {"reason": check.get("reason")})
    return appointment_type


def complete_booking_session(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Convert a session into a pending appointment.

    GraphQL mutation: completeBookingSession(sessionId, sessionToken)

    Returns:
        { appointment, reference, notificationsScheduled }

    Raises:
        AppError: INCOMPLETE_BOOKING, SLOT_UNAVAILABLE, NOT_FOUND, INVALID_INPUT
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = get_caller_identity(event, required=False)
        session = _load_session(event, identity)
        data = from_dynamo(session.get("data") or {})
        anonymous = "userId" not in session

        missing = require_fields(data, REQUIRED_BOOKING_FIELDS)
        if missing:
            raise AppError(
                ErrorCode.INCOMPLETE_BOOKING,
                "Booking is missing required information",
                {"missingFields": missing},
            )
        if anonymous and not (data.get("user_details") or {}).get("email"):
            raise AppError(ErrorCode.INVALID_INPUT, "Email is required for guest bookings")
        validate_meeting(data.get("meeting_type"), data.get("meeting_location"))

        appointment_type = _check_requested_slot(data)

        service = get_identity_service()
        if anonymous:
            details = validate_user_details(data.get("user_details"))
            user = service.get_identity_by_email(details["email"]) or service.create_pending_identity(
                details["email"], details["full_name"], details.get("phone")
            )
        else:
            user = service.require_identity_by_id(session["userId"])
        instructor = service.require_identity_by_id(data["instructor_id"])

        timestamp = now_utc().isoformat()
        appointment: Dict[str, Any] = {
            "appointmentId": new_id("APPOINTMENT"),
            "userId": user["userId"],
            "instructorId": data["instructor_id"],
            "appointmentTypeId": data["appointment_type_id"],
            "title": appointment_type.get("typeName") or "Appointment",
            "appointmentDate": data["appointment_date"],
            "startTime": data["start_time"],
            "endTime": data["end_time"],
            "durationMinutes": int(data["duration_minutes"]),
            "meetingType": data["meeting_type"],
            "status": "pending",
            "reminderSent": False,
            "bookingSessionId": session["sessionId"],
            "createdAt": timestamp,
            "updatedAt": timestamp,
        }
        optional = {
            "meetingLocation": data.get("meeting_location"),
            "meetingLink": appointment_type.get("meetingLink") if data["meeting_type"] != "offline" else None,
            "notes": data.get("notes") or (data.get("user_details") or {}).get("notes"),
            "price": appointment_type.get("price"),
        }
        appointment.update({k: v for k, v in optional.items() if v is not None})

        tables.appointments.put_item(
            Item=to_dynamo(appointment),
            ConditionExpression="attribute_not_exists(appointmentId)",
        )
        logger.info(
            "Appointment booked",
            appointment_id=appointment["appointmentId"],
            instructor_id=appointment["instructorId"],
            user_id=appointment["userId"],
        )

        notifications: List[Dict[str, Any]] = []
        try:
            notifications.extend(
                send_booking_confirmation(appointment, user["profile"], instructor["profile"], appointment_type)
            )
            notifications.extend(
                schedule_reminders(
                    appointment,
                    user["profile"],
                    instructor["profile"],
                    appointment_type.get("reminderConfig"),
                )
            )
        except Exception as e:
            logger.error(
                "Failed to schedule booking notifications",
                appointment_id=appointment["appointmentId"],
                error=str(e),
            )

        try:
            tables.booking_sessions.delete_item(Key={"sessionId": session["sessionId"]})
        except Exception as e:
            logger.warning("Failed to delete completed session", session_id=session["sessionId"], error=str(e))

        response = build_appointment_response(appointment)
        return {
            "appointment": dict(response),
            "reference": response["reference"],
            "notificationsScheduled": len(notifications),
        }

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to complete booking", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to complete booking")
