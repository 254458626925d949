"""
Identity Lambda handlers.

Implements:
- getMyIdentity: Resolve the caller's stable profile
- updateMyProfile: Edit the caller's own profile fields
- getIdentity: Public profile of another user
- searchUsers: Find users by nickname, email or name
- getUserStats: Admin dashboard counters
"""

from typing import Any, Dict, List

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.appsync_types import get_argument, get_argument_required, get_input  # type: ignore[import-not-found]
    from utils.auth import require_admin, require_caller_identity  # type: ignore[import-not-found]
    from utils.clock import now_iso  # type: ignore[import-not-found]
    from utils.dynamodb import build_update_expression, tables  # type: ignore[import-not-found]
    from utils.errors import AppError, ErrorCode  # type: ignore[import-not-found]
    from utils.identity import get_identity_service  # type: ignore[import-not-found]
    from utils.ids import ensure_user_id  # type: ignore[import-not-found]
    from utils.logging import get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.responses import build_user_profile_response  # type: ignore[import-not-found]
    from utils.validation import parse_int, sanitize_input  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.appsync_types import get_argument, get_argument_required, get_input
    from ..utils.auth import require_admin, require_caller_identity
    from ..utils.clock import now_iso
    from ..utils.dynamodb import build_update_expression, tables
    from ..utils.errors import AppError, ErrorCode
    from ..utils.identity import get_identity_service
    from ..utils.ids import ensure_user_id
    from ..utils.logging import get_correlation_id, get_logger
    from ..utils.responses import build_user_profile_response
    from ..utils.validation import parse_int, sanitize_input

# Profile fields a user may edit, with their maximum length
EDITABLE_PROFILE_FIELDS = {
    "nickname": 50,
    "fullName": 100,
    "school": 100,
    "subject": 100,
    "bio": 1000,
    "avatarUrl": 500,
}

MAX_SEARCH_LIMIT = 50


def get_my_identity(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL query: getMyIdentity. Creates the profile on first call."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = require_caller_identity(event)
        return dict(build_user_profile_response(identity["profile"]))
    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to resolve identity", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to resolve identity")


def update_my_profile(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Update the caller's own profile.

    GraphQL mutation: updateMyProfile(input: {nickname, fullName, school, subject, bio, avatarUrl})

    Empty strings clear a field. At least one editable field is required.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = require_caller_identity(event)
        payload = get_input(event)

        to_set: Dict[str, Any] = {}
        to_remove: List[str] = []
        for field, max_length in EDITABLE_PROFILE_FIELDS.items():
            if field not in payload:
                continue
            value = payload[field]
            if value is None or str(value).strip() == "":
                to_remove.append(field)
                continue
            cleaned = sanitize_input(str(value))
            if len(cleaned) > max_length:
                raise AppError(
                    ErrorCode.INVALID_INPUT,
                    f"{field} must be at most {max_length} characters",
                    {"field": field},
                )
            to_set[field] = cleaned

        if not to_set and not to_remove:
            raise AppError(ErrorCode.INVALID_INPUT, "At least one profile field must be provided")

        to_set["updatedAt"] = now_iso()
        expression, names, values = build_update_expression(to_set, to_remove)
        response = tables.user_profiles.update_item(
            Key={"userId": identity["userId"]},
            UpdateExpression=expression,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
        get_identity_service().clear_user_cache(identity["userId"])
        logger.info("Profile updated", user_id=identity["userId"], fields=sorted(to_set))
        return dict(build_user_profile_response(response["Attributes"]))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to update profile", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to update profile")


def get_identity(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL query: getIdentity(userId). Signed-in callers only."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_caller_identity(event)
        user_id = ensure_user_id(get_argument_required(event, "userId"))
        identity = get_identity_service().get_identity_by_id(user_id or "")
        if identity is None:
            raise AppError(ErrorCode.NOT_FOUND, f"User {user_id} not found")
        return dict(build_user_profile_response(identity["profile"]))
    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to get identity", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to get identity")


def search_users(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """GraphQL query: searchUsers(query, limit). The caller is excluded from results."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = require_caller_identity(event)
        query = str(get_argument(event, "query") or "")
        limit = min(max(parse_int(get_argument(event, "limit"), "limit", 10), 1), MAX_SEARCH_LIMIT)
        results = get_identity_service().search_users(query, limit, exclude_user_id=identity["userId"])
        return [dict(build_user_profile_response(p)) for p in results]
    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to search users", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to search users")


def get_user_stats(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL query: getUserStats (admin)."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)
        return dict(get_identity_service().get_user_stats())
    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to load user stats", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to load user stats")
