"""
Scheduled content actions.

Admins queue publish/unpublish/archive actions for a future time; a
scheduled Lambda runs the ones that are due. Failed actions are retried
on later runs until ``maxRetries`` is reached.
"""

from datetime import timezone
from typing import Any, Dict, List

from boto3.dynamodb.conditions import Key

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.appsync_types import get_argument, get_argument_required, get_input  # type: ignore[import-not-found]
    from utils.auth import require_admin  # type: ignore[import-not-found]
    from utils.clock import now_iso, now_utc, parse_iso  # type: ignore[import-not-found]
    from utils.content import CONTENT_TYPES, SCHEDULE_TYPES, apply_content_action, get_content, update_record  # type: ignore[import-not-found]
    from utils.dynamodb import build_update_expression, from_dynamo, query_all, scan_all, tables, to_dynamo  # type: ignore[import-not-found]
    from utils.errors import AppError, ErrorCode  # type: ignore[import-not-found]
    from utils.ids import ensure_schedule_id, new_id  # type: ignore[import-not-found]
    from utils.logging import get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.notifications import create_notification, resolve_message  # type: ignore[import-not-found]
    from utils.validation import parse_int, validate_choice, validate_timezone  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.appsync_types import get_argument, get_argument_required, get_input
    from ..utils.auth import require_admin
    from ..utils.clock import now_iso, now_utc, parse_iso
    from ..utils.content import CONTENT_TYPES, SCHEDULE_TYPES, apply_content_action, get_content, update_record
    from ..utils.dynamodb import build_update_expression, from_dynamo, query_all, scan_all, tables, to_dynamo
    from ..utils.errors import AppError, ErrorCode
    from ..utils.ids import ensure_schedule_id, new_id
    from ..utils.logging import get_correlation_id, get_logger
    from ..utils.notifications import create_notification, resolve_message
    from ..utils.validation import parse_int, validate_choice, validate_timezone

DEFAULT_MAX_RETRIES = 3


def _content_title(content: Dict[str, Any]) -> str:
    title = content.get("title")
    if isinstance(title, dict):
        return str(title.get("ko") or title.get("en") or "")
    return str(title or content.get("blockKey") or content.get("sectionKey") or content.get("blockId") or "")


def schedule_content_action(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL mutation: scheduleContentAction(input: {contentType, contentId, scheduleType,
    scheduledTime, timezone})

    Scheduling a section publish marks the section ``scheduled``.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        admin = require_admin(event)
        payload = get_input(event)

        content_type = validate_choice(payload.get("contentType"), CONTENT_TYPES, "contentType")
        schedule_type = validate_choice(payload.get("scheduleType"), SCHEDULE_TYPES, "scheduleType")
        content_id = payload.get("contentId")
        if not content_id:
            raise AppError(ErrorCode.INVALID_INPUT, "contentId is required", {"field": "contentId"})
        try:
            scheduled_time = parse_iso(payload.get("scheduledTime"))
        except ValueError:
            scheduled_time = None
        if scheduled_time is None:
            raise AppError(ErrorCode.INVALID_INPUT, "scheduledTime must be an ISO 8601 timestamp", {"field": "scheduledTime"})
        if scheduled_time <= now_utc():
            raise AppError(ErrorCode.INVALID_INPUT, "Scheduled time must be in the future", {"field": "scheduledTime"})

        content = get_content(content_type, content_id)
        if content is None:
            raise AppError(ErrorCode.NOT_FOUND, "Content not found")

        schedule: Dict[str, Any] = {
            "scheduleId": new_id("SCHEDULE"),
            "contentType": content_type,
            "contentId": content_id,
            "scheduleType": schedule_type,
            # UTC so the status-scheduledTime index compares correctly
            "scheduledTime": scheduled_time.astimezone(timezone.utc).isoformat(),
            "timezone": validate_timezone(payload.get("timezone") or "Asia/Seoul"),
            "status": "pending",
            "retryCount": 0,
            "maxRetries": parse_int(payload.get("maxRetries"), "maxRetries", DEFAULT_MAX_RETRIES),
            "createdBy": admin["userId"],
            "createdAt": now_iso(),
        }
        tables.content_schedules.put_item(Item=to_dynamo(schedule))

        if content_type == "section" and schedule_type == "publish":
            update_record("section", content, {"status": "scheduled", "scheduledPublishAt": schedule["scheduledTime"]})

        logger.info(
            "Content action scheduled",
            schedule_id=schedule["scheduleId"],
            content_id=content_id,
            schedule_type=schedule_type,
            scheduled_time=schedule["scheduledTime"],
        )
        return schedule

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to schedule content action", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to schedule content action")


def list_content_schedules(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """GraphQL query: listContentSchedules(status, contentType, scheduleType). Soonest first."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)
        schedules = [from_dynamo(s) for s in scan_all(tables.content_schedules)]
        for arg, field in (("status", "status"), ("contentType", "contentType"), ("scheduleType", "scheduleType")):
            value = get_argument(event, arg)
            if value and value != "all":
                schedules = [s for s in schedules if s.get(field) == value]
        schedules.sort(key=lambda s: s.get("scheduledTime", ""))
        return schedules

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to list content schedules", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to list content schedules")


def cancel_content_schedule(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL mutation: cancelContentSchedule(scheduleId)

    Only pending schedules can be cancelled. A section waiting on the
    cancelled publish goes back to draft.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)
        schedule_id = ensure_schedule_id(get_argument_required(event, "scheduleId"))

        item = tables.content_schedules.get_item(Key={"scheduleId": schedule_id}).get("Item")
        if not item:
            raise AppError(ErrorCode.NOT_FOUND, "Schedule not found")
        schedule = from_dynamo(item)
        if schedule.get("status") != "pending":
            raise AppError(ErrorCode.CONFLICT, f"Cannot cancel a schedule that is {schedule.get('status')}")

        updated = _update_schedule(schedule_id, {"status": "cancelled", "cancelledAt": now_iso()})

        if schedule["contentType"] == "section" and schedule["scheduleType"] == "publish":
            section = get_content("section", schedule["contentId"])
            if section and section.get("status") == "scheduled":
                update_record("section", section, {"status": "draft"}, remove=["scheduledPublishAt"])

        logger.info("Content schedule cancelled", schedule_id=schedule_id)
        return updated

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to cancel content schedule", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to cancel content schedule")


def _update_schedule(schedule_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    expression, names, values = build_update_expression(fields)
    response = tables.content_schedules.update_item(
        Key={"scheduleId": schedule_id},
        UpdateExpression=expression,
        ExpressionAttributeNames=names,
        ExpressionAttributeValues=values,
        ReturnValues="ALL_NEW",
    )
    return from_dynamo(response["Attributes"])  # type: ignore[no-any-return]


def _notify_creator(schedule: Dict[str, Any], outcome: str, title: str, error: str = "") -> None:
    creator = schedule.get("createdBy")
    if not creator:
        return
    data = {
        "content_title": title or schedule["contentId"],
        "schedule_type": schedule["scheduleType"],
        "scheduled_time": schedule["scheduledTime"],
        "error": error,
    }
    subject, message = resolve_message(outcome, "ko", data)
    create_notification(
        creator,
        outcome,
        subject,
        message,
        category="content",
        priority="high" if outcome == "schedule_failed" else "normal",
        template_key=outcome,
        template_data=data,
        action_data={"scheduleId": schedule["scheduleId"]},
    )


def run_due_content_schedules(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Scheduled job: execute pending content schedules whose time has come.

    Returns:
        { processed, executed, failed, retrying }
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        now = now_utc()
        counts = {"processed": 0, "executed": 0, "failed": 0, "retrying": 0}

        due = query_all(
            tables.content_schedules,
            IndexName="status-scheduledTime-index",
            KeyConditionExpression=Key("status").eq("pending") & Key("scheduledTime").lte(now.isoformat()),
        )

        for item in due:
            schedule = from_dynamo(item)
            counts["processed"] += 1
            try:
                content = apply_content_action(schedule["contentType"], schedule["contentId"], schedule["scheduleType"])
            except Exception as e:
                retry_count = int(schedule.get("retryCount") or 0) + 1
                exhausted = retry_count >= int(schedule.get("maxRetries") or DEFAULT_MAX_RETRIES)
                fields: Dict[str, Any] = {
                    "retryCount": retry_count,
                    "errorMessage": str(e),
                    "lastAttemptAt": now.isoformat(),
                }
                if exhausted:
                    fields["status"] = "failed"
                    counts["failed"] += 1
                else:
                    counts["retrying"] += 1
                _update_schedule(schedule["scheduleId"], fields)
                logger.error(
                    "Content schedule failed",
                    schedule_id=schedule["scheduleId"],
                    retry_count=retry_count,
                    exhausted=exhausted,
                    error=str(e),
                )
                if exhausted:
                    try:
                        _notify_creator(schedule, "schedule_failed", "", str(e))
                    except Exception as notify_error:
                        logger.error("Failed to notify schedule creator", error=str(notify_error))
                continue

            _update_schedule(
                schedule["scheduleId"],
                {
                    "status": "executed",
                    "executedAt": now.isoformat(),
                    "executionResult": {
                        k: v
                        for k, v in {
                            "action": schedule["scheduleType"],
                            "contentType": schedule["contentType"],
                            "contentId": schedule["contentId"],
                            "status": content.get("status"),
                            "isActive": content.get("isActive"),
                        }.items()
                        if v is not None
                    },
                },
            )
            counts["executed"] += 1
            logger.info("Content schedule executed", schedule_id=schedule["scheduleId"])
            try:
                _notify_creator(schedule, "schedule_executed", _content_title(content))
            except Exception as e:
                logger.error("Failed to notify schedule creator", error=str(e))

        logger.info("Content schedule run finished", **counts)
        return counts

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to run content schedules", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to run content schedules")
