"""
In-app notification Lambda handlers.

Implements:
- listNotifications / markNotificationRead / markAllNotificationsRead
- pollNotifications: unread notifications since a cursor (client polls instead of SSE)
- getNotificationPreferences / updateNotificationPreferences
- dispatch_due_notifications: scheduled job delivering queued notifications
"""

from datetime import timedelta
from typing import Any, Dict, List

from boto3.dynamodb.conditions import Attr, Key

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.appsync_types import get_argument, get_argument_required, get_input  # type: ignore[import-not-found]
    from utils.auth import is_admin_identity, require_caller_identity  # type: ignore[import-not-found]
    from utils.clock import now_iso, now_utc, parse_iso  # type: ignore[import-not-found]
    from utils.dynamodb import build_update_expression, from_dynamo, query_all, tables, to_dynamo  # type: ignore[import-not-found]
    from utils.errors import AppError, ErrorCode  # type: ignore[import-not-found]
    from utils.ids import ensure_notification_id, ensure_user_id  # type: ignore[import-not-found]
    from utils.logging import get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.notifications import (  # type: ignore[import-not-found]
        CATEGORIES,
        CHANNELS,
        DIGEST_FREQUENCIES,
        decide_delivery,
        default_preference,
        due_notifications,
        is_sent_since,
        send_external,
    )
    from utils.responses import build_notification_response  # type: ignore[import-not-found]
    from utils.validation import parse_int, validate_choice, validate_time, validate_timezone  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.appsync_types import get_argument, get_argument_required, get_input
    from ..utils.auth import is_admin_identity, require_caller_identity
    from ..utils.clock import now_iso, now_utc, parse_iso
    from ..utils.dynamodb import build_update_expression, from_dynamo, query_all, tables, to_dynamo
    from ..utils.errors import AppError, ErrorCode
    from ..utils.ids import ensure_notification_id, ensure_user_id
    from ..utils.logging import get_correlation_id, get_logger
    from ..utils.notifications import (
        CATEGORIES,
        CHANNELS,
        DIGEST_FREQUENCIES,
        decide_delivery,
        default_preference,
        due_notifications,
        is_sent_since,
        send_external,
    )
    from ..utils.responses import build_notification_response
    from ..utils.validation import parse_int, validate_choice, validate_time, validate_timezone

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100
POLL_WINDOW = timedelta(seconds=60)
MAX_PREFERENCE_UPDATES = 10


def _sent_notifications(user_id: str, unread_only: bool = False) -> List[Dict[str, Any]]:
    condition = Attr("deliveryStatus").eq("sent")
    if unread_only:
        condition = condition & Attr("isRead").eq(False)
    items = query_all(
        tables.notifications,
        KeyConditionExpression=Key("userId").eq(user_id),
        FilterExpression=condition,
    )
    items.sort(key=lambda i: i.get("sentAt") or i.get("createdAt", ""), reverse=True)
    return items


def list_notifications(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL query: listNotifications(unreadOnly, limit)

    Returns:
        { items, unreadCount }
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = require_caller_identity(event)
        unread_only = bool(get_argument(event, "unreadOnly", False))
        limit = min(max(parse_int(get_argument(event, "limit"), "limit", DEFAULT_LIST_LIMIT), 1), MAX_LIST_LIMIT)

        items = _sent_notifications(identity["userId"])
        unread_count = sum(1 for i in items if not i.get("isRead"))
        if unread_only:
            items = [i for i in items if not i.get("isRead")]
        return {
            "items": [dict(build_notification_response(i)) for i in items[:limit]],
            "unreadCount": unread_count,
        }

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to list notifications", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to list notifications")


def mark_notification_read(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL mutation: markNotificationRead(notificationId). Own notifications only."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = require_caller_identity(event)
        notification_id = ensure_notification_id(get_argument_required(event, "notificationId"))

        expression, names, values = build_update_expression({"isRead": True, "readAt": now_iso()})
        try:
            response = tables.notifications.update_item(
                Key={"userId": identity["userId"], "notificationId": notification_id},
                UpdateExpression=expression,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression="attribute_exists(notificationId)",
                ReturnValues="ALL_NEW",
            )
        except tables.notifications.meta.client.exceptions.ConditionalCheckFailedException:
            raise AppError(ErrorCode.NOT_FOUND, "Notification not found")
        return dict(build_notification_response(response["Attributes"]))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to mark notification read", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to mark notification read")


def mark_all_read(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL mutation: markAllNotificationsRead. Returns { updated }."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = require_caller_identity(event)
        unread = _sent_notifications(identity["userId"], unread_only=True)
        timestamp = now_iso()
        for item in unread:
            tables.notifications.update_item(
                Key={"userId": identity["userId"], "notificationId": item["notificationId"]},
                UpdateExpression="SET #read = :true, #readAt = :now",
                ExpressionAttributeNames={"#read": "isRead", "#readAt": "readAt"},
                ExpressionAttributeValues={":true": True, ":now": timestamp},
            )
        return {"updated": len(unread)}

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to mark notifications read", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to mark notifications read")


def poll_notifications(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL query: pollNotifications(since)

    Unread notifications sent at or after ``since`` (default: the last minute).
    Clients pass the returned ``serverTime`` as the next ``since``.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = require_caller_identity(event)
        now = now_utc()
        try:
            since = parse_iso(get_argument(event, "since")) or now - POLL_WINDOW
        except ValueError:
            raise AppError(ErrorCode.INVALID_INPUT, "since must be an ISO 8601 timestamp")

        fresh = [i for i in _sent_notifications(identity["userId"], unread_only=True) if is_sent_since(i, since)]
        fresh.reverse()
        return {
            "notifications": [dict(build_notification_response(i)) for i in fresh],
            "serverTime": now.isoformat(),
        }

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to poll notifications", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to poll notifications")


def _resolve_preference_owner(event: Dict[str, Any]) -> str:
    identity = require_caller_identity(event)
    requested = ensure_user_id(get_argument(event, "userId"))
    if requested and requested != identity["userId"]:
        if not is_admin_identity(event, identity):
            raise AppError(ErrorCode.FORBIDDEN, "Cannot access another user's preferences")
        return requested
    return identity["userId"]


def get_notification_preferences(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """
    GraphQL query: getNotificationPreferences(userId)

    First access stores the defaults for every category.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        user_id = _resolve_preference_owner(event)
        items = query_all(
            tables.notification_preferences, KeyConditionExpression=Key("userId").eq(user_id)
        )
        if not items:
            items = [default_preference(user_id, category) for category in CATEGORIES]
            with tables.notification_preferences.batch_writer() as batch:
                for item in items:
                    batch.put_item(Item={k: v for k, v in item.items() if v is not None})
            logger.info("Default notification preferences created", user_id=user_id)
            return items
        return sorted((from_dynamo(i) for i in items), key=lambda p: CATEGORIES.index(p["category"]))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to get notification preferences", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to get notification preferences")


def _validate_preference(raw: Dict[str, Any]) -> Dict[str, Any]:
    category = validate_choice(raw.get("category"), CATEGORIES, "category")
    update: Dict[str, Any] = {}

    if "channels" in raw:
        channels = list(raw.get("channels") or [])
        if not channels:
            raise AppError(ErrorCode.INVALID_INPUT, "At least one channel is required", {"field": "channels"})
        update["channels"] = [validate_choice(c, CHANNELS, "channels") for c in channels]
    for field in ("quietHoursStart", "quietHoursEnd"):
        if raw.get(field):
            update[field] = validate_time(raw[field], field)
    if raw.get("timezone"):
        update["timezone"] = validate_timezone(raw["timezone"])
    if "digestFrequency" in raw:
        update["digestFrequency"] = validate_choice(raw["digestFrequency"], DIGEST_FREQUENCIES, "digestFrequency")
    if "maxNotificationsPerHour" in raw:
        limit = parse_int(raw["maxNotificationsPerHour"], "maxNotificationsPerHour")
        if limit < 1 or limit > 100:
            raise AppError(
                ErrorCode.INVALID_INPUT,
                "maxNotificationsPerHour must be between 1 and 100",
                {"field": "maxNotificationsPerHour"},
            )
        update["maxNotificationsPerHour"] = limit
    if "isActive" in raw:
        update["isActive"] = bool(raw["isActive"])
    return {"category": category, **update}


def update_notification_preferences(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """
    GraphQL mutation: updateNotificationPreferences(userId, preferences: [...])

    Each entry names a category and the fields to change; unspecified
    fields keep their stored (or default) values.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        user_id = _resolve_preference_owner(event)
        payload = get_input(event)
        raw_preferences = payload.get("preferences") or []
        if not raw_preferences or len(raw_preferences) > MAX_PREFERENCE_UPDATES:
            raise AppError(
                ErrorCode.INVALID_INPUT,
                f"Between 1 and {MAX_PREFERENCE_UPDATES} preferences must be provided",
            )

        updates = [_validate_preference(raw) for raw in raw_preferences]
        saved: List[Dict[str, Any]] = []
        for update in updates:
            existing = tables.notification_preferences.get_item(
                Key={"userId": user_id, "category": update["category"]}
            ).get("Item")
            current = from_dynamo(existing) if existing else default_preference(user_id, update["category"])
            merged = {**current, **update, "updatedAt": now_iso()}
            if bool(merged.get("quietHoursStart")) != bool(merged.get("quietHoursEnd")):
                raise AppError(
                    ErrorCode.INVALID_INPUT,
                    "quietHoursStart and quietHoursEnd must be set together",
                    {"category": update["category"]},
                )
            tables.notification_preferences.put_item(
                Item=to_dynamo({k: v for k, v in merged.items() if v is not None})
            )
            saved.append(merged)

        logger.info("Notification preferences updated", user_id=user_id, categories=[u["category"] for u in updates])
        return saved

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to update notification preferences", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to update notification preferences")


def dispatch_due_notifications(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Scheduled job: deliver queued notifications whose time has come.

    Returns:
        { processed, sent, cancelled, deferred }
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        now = now_utc()
        counts = {"processed": 0, "sent": 0, "cancelled": 0, "deferred": 0}

        for item in due_notifications(now):
            counts["processed"] += 1
            notification = from_dynamo(item)
            try:
                status, channels = decide_delivery(notification, now)
                if status == "pending":
                    counts["deferred"] += 1
                    continue

                fields: Dict[str, Any] = {"deliveryStatus": status, "updatedAt": now.isoformat()}
                if status == "sent":
                    fields["sentAt"] = now.isoformat()
                    fields["deliveredChannels"] = channels
                expression, names, values = build_update_expression(fields)
                tables.notifications.update_item(
                    Key={"userId": notification["userId"], "notificationId": notification["notificationId"]},
                    UpdateExpression=expression,
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=values,
                )
                if status == "sent":
                    counts["sent"] += 1
                    send_external(notification, channels)
                else:
                    counts["cancelled"] += 1
            except Exception as e:
                # One bad record must not stop the batch
                logger.error(
                    "Failed to dispatch notification",
                    notification_id=notification.get("notificationId"),
                    error=str(e),
                )

        logger.info("Notification dispatch finished", **counts)
        return counts

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to dispatch notifications", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to dispatch notifications")
