"""
Type definitions for AppSync Lambda events.

Provides TypedDict definitions for strongly typing AppSync resolver events,
reducing runtime errors from incorrect event structure assumptions.
"""

from typing import Any, Dict, List, Optional, TypedDict

from .errors import AppError, ErrorCode


class AppSyncIdentity(TypedDict, total=False):
    """AppSync Cognito User Pool identity."""

    sub: str  # Cognito user ID
    username: str
    claims: Dict[str, Any]
    sourceIp: List[str]
    defaultAuthStrategy: str


class AppSyncEvent(TypedDict, total=False):
    """Base AppSync resolver event structure."""

    identity: Optional[AppSyncIdentity]  # None for API-key (public) requests
    arguments: Dict[str, Any]
    source: Dict[str, Any]
    info: Dict[str, Any]
    request: Dict[str, Any]
    requestContext: Dict[str, Any]


# Helper functions for safe extraction


def get_caller_id(event: Dict[str, Any]) -> Optional[str]:
    """
    Extract caller's Cognito sub (user ID) from event.

    Returns:
        Caller ID or None for anonymous callers
    """
    identity: Dict[str, Any] = event.get("identity") or {}
    result: Optional[str] = identity.get("sub")
    return result


def get_claims(event: Dict[str, Any]) -> Dict[str, Any]:
    """JWT claims of the caller (empty for anonymous callers)."""
    identity: Dict[str, Any] = event.get("identity") or {}
    claims: Dict[str, Any] = identity.get("claims") or {}
    return claims


def get_argument(event: Dict[str, Any], name: str, default: Any = None) -> Any:
    """Extract an argument from the event, or ``default`` if absent."""
    return (event.get("arguments") or {}).get(name, default)


def get_argument_required(event: Dict[str, Any], name: str) -> Any:
    """
    Extract a required argument from the event.

    Raises:
        AppError: INVALID_INPUT if the argument is not present
    """
    value = get_argument(event, name)
    if value is None:
        raise AppError(ErrorCode.INVALID_INPUT, f"Argument '{name}' is required", {"field": name})
    return value


def get_input(event: Dict[str, Any]) -> Dict[str, Any]:
    """Mutation input object: ``arguments.input`` when present, else the arguments themselves."""
    arguments: Dict[str, Any] = event.get("arguments") or {}
    payload = arguments.get("input")
    if isinstance(payload, dict):
        return payload
    return arguments
