"""
Authorization utilities.

Roles come from the Cognito ``cognito:groups`` claim, optionally raised by
the role stored on the caller's profile. Resolvers call these helpers at the
top of the handler instead of relying on a middleware wrapper.
"""

from typing import Any, Dict, Iterable, List, Optional, cast

from .appsync_types import get_caller_id, get_claims
from .errors import AppError, ErrorCode
from .identity import IdentityData, get_identity_service
from .logging import get_logger

logger = get_logger(__name__)

# Highest privilege first
ROLE_PRIORITY = ["super_admin", "admin", "moderator", "instructor", "verified", "member"]
ADMIN_ROLES = {"super_admin", "admin"}
STAFF_ROLES = {"super_admin", "admin", "moderator"}


def get_groups(event: Dict[str, Any]) -> List[str]:
    """Cognito groups of the caller; a single-string claim becomes a one-item list."""
    groups = get_claims(event).get("cognito:groups", [])
    # cognito:groups can be a string or list in JWT
    if isinstance(groups, str):
        groups = [g.strip() for g in groups.split(",") if g.strip()]
    return [str(g) for g in groups or []]


def derive_role(groups: Iterable[str]) -> str:
    """Highest-privilege role among the given group names (``member`` by default)."""
    lowered = {g.lower() for g in groups}
    for role in ROLE_PRIORITY:
        if role in lowered:
            return role
    return "member"


def _rank(role: Optional[str]) -> int:
    try:
        return ROLE_PRIORITY.index(role or "member")
    except ValueError:
        return len(ROLE_PRIORITY)


def effective_role(event: Dict[str, Any], identity: Optional[IdentityData] = None) -> str:
    """Group-derived role, upgraded by the profile role when that one is higher."""
    role = derive_role(get_groups(event))
    if identity:
        profile_role = identity["profile"].get("role")
        if profile_role and _rank(profile_role) < _rank(role):
            return str(profile_role)
    return role


def is_admin(event: Dict[str, Any]) -> bool:
    """
    Check if caller has admin privileges from the JWT cognito:groups claim.

    Returns:
        True if caller is in an ADMIN or SUPER_ADMIN group, False otherwise
    """
    try:
        return derive_role(get_groups(event)) in ADMIN_ROLES
    except Exception:
        return False


def get_caller_identity(event: Dict[str, Any], required: bool = True) -> Optional[IdentityData]:
    """
    Resolve the caller's stable identity.

    Args:
        event: AppSync event
        required: Raise UNAUTHORIZED for anonymous callers instead of returning None

    Returns:
        IdentityData, or None for anonymous callers when not required
    """
    auth_user_id = get_caller_id(event)
    if not auth_user_id:
        if required:
            raise AppError(ErrorCode.UNAUTHORIZED, "Authentication required")
        return None

    identity = get_identity_service().resolve_user_identity(auth_user_id, get_claims(event).get("email"))
    if identity["profile"].get("status") == "suspended":
        raise AppError(ErrorCode.FORBIDDEN, "Account is suspended")
    return identity


def require_caller_identity(event: Dict[str, Any]) -> IdentityData:
    """Identity of a signed-in caller; anonymous callers get UNAUTHORIZED."""
    return cast(IdentityData, get_caller_identity(event, required=True))


def require_role(event: Dict[str, Any], roles: Iterable[str]) -> IdentityData:
    """Require an authenticated caller whose effective role is one of ``roles``."""
    identity = require_caller_identity(event)
    role = effective_role(event, identity)
    if role not in set(roles):
        logger.warning("Role check failed", user_id=identity["userId"], role=role)
        raise AppError(ErrorCode.FORBIDDEN, "You do not have permission to perform this action")
    return identity


def require_admin(event: Dict[str, Any]) -> IdentityData:
    """Require an authenticated admin caller."""
    return require_role(event, ADMIN_ROLES)


def is_admin_identity(event: Dict[str, Any], identity: Optional[IdentityData]) -> bool:
    return effective_role(event, identity) in ADMIN_ROLES


def can_access_appointment(user_id: str, appointment: Dict[str, Any], admin: bool = False) -> bool:
    """Participants (booking user or instructor) and admins may see an appointment."""
    if admin:
        return True
    return user_id in (appointment.get("userId"), appointment.get("instructorId"))


def require_appointment_access(
    user_id: str, appointment: Dict[str, Any], admin: bool = False
) -> None:
    if not can_access_appointment(user_id, appointment, admin):
        raise AppError(ErrorCode.FORBIDDEN, "You do not have access to this appointment")
