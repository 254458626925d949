"""
Instructor availability Lambda handlers.

Implements:
- getAvailability: Public slot grid for one date (one or all instructors)
- listAppointmentTypes: Public list of bookable services
- setInstructorAvailability: Replace an instructor's weekly rules
- createTimeBlock / deleteTimeBlock: One-off blocked periods
- saveAppointmentType: Create or update a bookable service

Instructors manage their own schedule; admins may manage anyone's.
"""

from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.appsync_types import get_argument, get_input  # type: ignore[import-not-found]
    from utils.auth import effective_role, is_admin_identity, require_caller_identity  # type: ignore[import-not-found]
    from utils.clock import now_iso  # type: ignore[import-not-found]
    from utils.dynamodb import from_dynamo, query_all, scan_all, tables, to_dynamo  # type: ignore[import-not-found]
    from utils.errors import AppError, ErrorCode  # type: ignore[import-not-found]
    from utils.identity import get_identity_service  # type: ignore[import-not-found]
    from utils.ids import ensure_appointment_type_id, ensure_prefix, new_id  # type: ignore[import-not-found]
    from utils.logging import get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.scheduling import build_instructor_availability, get_appointment_type, time_to_minutes  # type: ignore[import-not-found]
    from utils.validation import parse_int, validate_choice, validate_date, validate_time  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.appsync_types import get_argument, get_input
    from ..utils.auth import effective_role, is_admin_identity, require_caller_identity
    from ..utils.clock import now_iso
    from ..utils.dynamodb import from_dynamo, query_all, scan_all, tables, to_dynamo
    from ..utils.errors import AppError, ErrorCode
    from ..utils.identity import get_identity_service
    from ..utils.ids import ensure_appointment_type_id, ensure_prefix, new_id
    from ..utils.logging import get_correlation_id, get_logger
    from ..utils.scheduling import build_instructor_availability, get_appointment_type, time_to_minutes
    from ..utils.validation import parse_int, validate_choice, validate_date, validate_time

DEFAULT_DURATION = 60
MEETING_TYPES = ["online", "offline", "hybrid"]


def _list_instructors() -> List[Dict[str, Any]]:
    items = scan_all(
        tables.user_profiles,
        FilterExpression=Attr("role").eq("instructor") & Attr("status").eq("active"),
    )
    return [from_dynamo(item) for item in items]


def get_availability(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """
    Slot grid for a date.

    GraphQL query: getAvailability(date, instructorId, durationMinutes, appointmentTypeId)

    An appointment type, when given, fixes both the instructor and the slot length.
    Results are sorted by instructor name.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        appointment_date = validate_date(get_argument(event, "date"), "date")
        instructor_id = get_argument(event, "instructorId")
        duration = parse_int(get_argument(event, "durationMinutes"), "durationMinutes", DEFAULT_DURATION)

        type_id = ensure_appointment_type_id(get_argument(event, "appointmentTypeId"))
        if type_id:
            appointment_type = get_appointment_type(type_id)
            if not appointment_type:
                raise AppError(ErrorCode.NOT_FOUND, "Appointment type not found")
            duration = int(appointment_type.get("durationMinutes") or duration)
            instructor_id = appointment_type.get("instructorId")

        if duration <= 0:
            raise AppError(ErrorCode.INVALID_INPUT, "durationMinutes must be positive")

        if instructor_id:
            identity = get_identity_service().get_identity_by_id(instructor_id)
            if identity is None:
                raise AppError(ErrorCode.NOT_FOUND, "Instructor not found")
            instructors = [identity["profile"]]
        else:
            instructors = _list_instructors()

        results = [build_instructor_availability(i, appointment_date, duration) for i in instructors]
        results.sort(key=lambda r: r["instructor_name"])
        logger.info("Availability computed", date=appointment_date, instructors=len(results))
        return results

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to get availability", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to get availability")


def list_appointment_types(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """GraphQL query: listAppointmentTypes(instructorId). Active types only."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        instructor_id = get_argument(event, "instructorId")
        if instructor_id:
            items = query_all(
                tables.appointment_types,
                IndexName="instructorId-index",
                KeyConditionExpression=Key("instructorId").eq(instructor_id),
            )
        else:
            items = scan_all(tables.appointment_types)
        active = [from_dynamo(i) for i in items if i.get("isActive", True)]
        return sorted(active, key=lambda t: (t.get("instructorId", ""), t.get("typeName", "")))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to list appointment types", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to list appointment types")


def _require_schedule_owner(event: Dict[str, Any], instructor_id: Optional[str]) -> str:
    """Resolve the instructor being managed and check the caller may manage them."""
    identity = require_caller_identity(event)
    target = instructor_id or identity["userId"]
    if is_admin_identity(event, identity):
        return target
    if target != identity["userId"] or effective_role(event, identity) != "instructor":
        raise AppError(ErrorCode.FORBIDDEN, "Only the instructor or an admin can manage this schedule")
    return target


def set_instructor_availability(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """
    Replace the weekly availability rules of an instructor.

    GraphQL mutation: setInstructorAvailability(instructorId, rules: [{dayOfWeek, startTime, endTime, bufferMinutes}])
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        payload = get_input(event)
        instructor_id = _require_schedule_owner(event, payload.get("instructorId"))

        rules: List[Dict[str, Any]] = []
        for raw in payload.get("rules") or []:
            day = parse_int(raw.get("dayOfWeek"), "dayOfWeek", -1)
            if day < 0 or day > 6:
                raise AppError(ErrorCode.INVALID_INPUT, "dayOfWeek must be between 0 (Sunday) and 6")
            start = validate_time(raw.get("startTime"), "startTime")
            end = validate_time(raw.get("endTime"), "endTime")
            if time_to_minutes(end) <= time_to_minutes(start):
                raise AppError(ErrorCode.INVALID_INPUT, "endTime must be after startTime")
            rules.append(
                {
                    "instructorId": instructor_id,
                    "availabilityId": new_id("AVAILABILITY"),
                    "dayOfWeek": day,
                    "startTime": start,
                    "endTime": end,
                    "bufferMinutes": parse_int(raw.get("bufferMinutes"), "bufferMinutes"),
                    "isAvailable": bool(raw.get("isAvailable", True)),
                    "createdAt": now_iso(),
                }
            )

        table = tables.instructor_availability
        existing = query_all(table, KeyConditionExpression=Key("instructorId").eq(instructor_id))
        with table.batch_writer() as batch:
            for item in existing:
                batch.delete_item(Key={"instructorId": instructor_id, "availabilityId": item["availabilityId"]})
            for rule in rules:
                batch.put_item(Item=rule)

        logger.info("Availability rules replaced", instructor_id=instructor_id, count=len(rules))
        return rules

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to set availability", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to set availability")


def create_time_block(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Block a period on a date; omitting times blocks the whole day.

    GraphQL mutation: createTimeBlock(input: {instructorId, blockDate, startTime, endTime, reason})
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        payload = get_input(event)
        instructor_id = _require_schedule_owner(event, payload.get("instructorId"))

        block: Dict[str, Any] = {
            "instructorId": instructor_id,
            "blockId": new_id("BLOCK"),
            "blockDate": validate_date(payload.get("blockDate"), "blockDate"),
            "createdAt": now_iso(),
        }
        if payload.get("startTime") or payload.get("endTime"):
            block["startTime"] = validate_time(payload.get("startTime"), "startTime")
            block["endTime"] = validate_time(payload.get("endTime"), "endTime")
            if time_to_minutes(block["endTime"]) <= time_to_minutes(block["startTime"]):
                raise AppError(ErrorCode.INVALID_INPUT, "endTime must be after startTime")
        if payload.get("reason"):
            block["reason"] = str(payload["reason"])[:500]

        tables.time_blocks.put_item(Item=block)
        logger.info("Time block created", instructor_id=instructor_id, block_date=block["blockDate"])
        return block

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to create time block", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to create time block")


def delete_time_block(event: Dict[str, Any], context: Any) -> bool:
    """GraphQL mutation: deleteTimeBlock(instructorId, blockId)."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        instructor_id = _require_schedule_owner(event, get_argument(event, "instructorId"))
        block_id = ensure_prefix("BLOCK", get_argument(event, "blockId"))
        try:
            tables.time_blocks.delete_item(
                Key={"instructorId": instructor_id, "blockId": block_id},
                ConditionExpression="attribute_exists(blockId)",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise AppError(ErrorCode.NOT_FOUND, "Time block not found")
            raise
        logger.info("Time block deleted", instructor_id=instructor_id, block_id=block_id)
        return True

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to delete time block", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to delete time block")


def save_appointment_type(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Create or update a bookable service.

    GraphQL mutation: saveAppointmentType(input: {appointmentTypeId?, instructorId, typeName,
    description, durationMinutes, price, meetingType, meetingLink, bookingAdvanceDays,
    reminderConfig, isActive})
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        payload = get_input(event)
        instructor_id = _require_schedule_owner(event, payload.get("instructorId"))

        type_name = str(payload.get("typeName") or "").strip()
        if not type_name:
            raise AppError(ErrorCode.INVALID_INPUT, "typeName is required")
        duration = parse_int(payload.get("durationMinutes"), "durationMinutes")
        if duration < 15 or duration > 480:
            raise AppError(ErrorCode.INVALID_INPUT, "durationMinutes must be between 15 and 480")

        type_id = ensure_appointment_type_id(payload.get("appointmentTypeId"))
        existing = get_appointment_type(type_id) if type_id else None
        if type_id and existing is None:
            raise AppError(ErrorCode.NOT_FOUND, "Appointment type not found")
        if existing and existing.get("instructorId") != instructor_id:
            raise AppError(ErrorCode.FORBIDDEN, "Appointment type belongs to another instructor")

        timestamp = now_iso()
        item: Dict[str, Any] = {
            **(existing or {}),
            "appointmentTypeId": type_id or new_id("APPTYPE"),
            "instructorId": instructor_id,
            "typeName": type_name,
            "description": payload.get("description") or "",
            "durationMinutes": duration,
            "price": payload.get("price") or 0,
            "meetingType": validate_choice(payload.get("meetingType") or "online", MEETING_TYPES, "meetingType"),
            "bookingAdvanceDays": parse_int(payload.get("bookingAdvanceDays"), "bookingAdvanceDays", 30),
            "isActive": bool(payload.get("isActive", True)),
            "updatedAt": timestamp,
        }
        if payload.get("meetingLink"):
            item["meetingLink"] = payload["meetingLink"]
        if payload.get("reminderConfig"):
            item["reminderConfig"] = {k: bool(v) for k, v in payload["reminderConfig"].items()}
        item.setdefault("createdAt", timestamp)

        tables.appointment_types.put_item(Item=to_dynamo(item))
        logger.info("Appointment type saved", appointment_type_id=item["appointmentTypeId"])
        return item

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to save appointment type", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to save appointment type")
