"""
Admin user management Lambda handlers.

All operations require an admin caller (cognito:groups or profile role).
Role and status changes drop the user's cached identity so the next
request sees the new values.
"""

from typing import Any, Dict

from boto3.dynamodb.conditions import Attr

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.appsync_types import get_argument, get_argument_required  # type: ignore[import-not-found]
    from utils.auth import effective_role, require_admin  # type: ignore[import-not-found]
    from utils.clock import now_iso  # type: ignore[import-not-found]
    from utils.dynamodb import build_update_expression, scan_all, tables  # type: ignore[import-not-found]
    from utils.errors import AppError, ErrorCode  # type: ignore[import-not-found]
    from utils.identity import get_identity_service  # type: ignore[import-not-found]
    from utils.ids import ensure_user_id  # type: ignore[import-not-found]
    from utils.logging import get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.responses import build_page, build_user_profile_response  # type: ignore[import-not-found]
    from utils.validation import parse_int, validate_choice  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.appsync_types import get_argument, get_argument_required
    from ..utils.auth import effective_role, require_admin
    from ..utils.clock import now_iso
    from ..utils.dynamodb import build_update_expression, scan_all, tables
    from ..utils.errors import AppError, ErrorCode
    from ..utils.identity import get_identity_service
    from ..utils.ids import ensure_user_id
    from ..utils.logging import get_correlation_id, get_logger
    from ..utils.responses import build_page, build_user_profile_response
    from ..utils.validation import parse_int, validate_choice

ASSIGNABLE_ROLES = ["member", "verified", "instructor", "moderator", "admin"]
USER_STATUSES = ["active", "pending", "suspended"]
MAX_PAGE_SIZE = 100


def list_users(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL query: listUsers(role, status, search, page, limit)

    Newest accounts first.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)

        page = max(parse_int(get_argument(event, "page"), "page", 1), 1)
        limit = min(max(parse_int(get_argument(event, "limit"), "limit", 20), 1), MAX_PAGE_SIZE)

        filters = []
        role = get_argument(event, "role")
        if role:
            filters.append(Attr("role").eq(role))
        status = get_argument(event, "status")
        if status:
            filters.append(Attr("status").eq(status))

        kwargs: Dict[str, Any] = {}
        if filters:
            condition = filters[0]
            for extra in filters[1:]:
                condition = condition & extra
            kwargs["FilterExpression"] = condition

        items = scan_all(tables.user_profiles, **kwargs)

        search = str(get_argument(event, "search") or "").strip().lower()
        if search:
            items = [
                item
                for item in items
                if any(search in str(item.get(f) or "").lower() for f in ("email", "nickname", "fullName"))
            ]

        items.sort(key=lambda i: i.get("createdAt", ""), reverse=True)
        return build_page([dict(build_user_profile_response(i)) for i in items], page, limit)

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to list users", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to list users")


def _update_user(event: Dict[str, Any], field: str, value: str) -> Dict[str, Any]:
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        admin = require_admin(event)
        user_id = ensure_user_id(get_argument_required(event, "userId"))

        if user_id == admin["userId"]:
            raise AppError(ErrorCode.FORBIDDEN, f"Admins cannot change their own {field}")

        target = tables.user_profiles.get_item(Key={"userId": user_id}).get("Item")
        if not target:
            raise AppError(ErrorCode.NOT_FOUND, f"User {user_id} not found")
        if target.get("role") == "super_admin" and effective_role(event, admin) != "super_admin":
            raise AppError(ErrorCode.FORBIDDEN, "Only a super admin can change another super admin")

        expression, names, values = build_update_expression({field: value, "updatedAt": now_iso()})
        try:
            response = tables.user_profiles.update_item(
                Key={"userId": user_id},
                UpdateExpression=expression,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression="attribute_exists(userId)",
                ReturnValues="ALL_NEW",
            )
        except tables.user_profiles.meta.client.exceptions.ConditionalCheckFailedException:
            raise AppError(ErrorCode.NOT_FOUND, f"User {user_id} not found")

        get_identity_service().clear_user_cache(user_id or "")
        logger.info("User updated by admin", user_id=user_id, admin_id=admin["userId"], field=field, value=value)
        return dict(build_user_profile_response(response["Attributes"]))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to update user", field=field, error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, f"Failed to update user {field}")


def update_user_role(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL mutation: updateUserRole(userId, role)."""
    role = validate_choice(get_argument(event, "role"), ASSIGNABLE_ROLES, "role")
    return _update_user(event, "role", role)


def update_user_status(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL mutation: updateUserStatus(userId, status)."""
    status = validate_choice(get_argument(event, "status"), USER_STATUSES, "status")
    return _update_user(event, "status", status)
