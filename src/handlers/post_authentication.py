"""
Cognito Post-Authentication Lambda Trigger

Resolves the stable user identity when a user successfully authenticates.
Guest bookers who sign up later get their pending profile linked and
activated here, so getMyIdentity always has data to return.

Trigger: Post Authentication
Event: After user signs in (including first-time social login)
"""

import logging
from typing import Any, Dict

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.identity import get_identity_service  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.identity import get_identity_service

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Post-Authentication Lambda Trigger Handler

    Event structure:
    {
        "version": "1",
        "triggerSource": "PostAuthentication_Authentication",
        "userName": "google_123456789",
        "request": {
            "userAttributes": {
                "sub": "a1b2c3d4-...",
                "email": "user@example.com",
                "email_verified": "true"
            }
        },
        "response": {}
    }

    Returns:
        event: Must return the event unmodified for Cognito to continue
    """
    try:
        logger.info(f"Post-authentication trigger invoked: {event.get('triggerSource')}")

        user_attributes = event.get("request", {}).get("userAttributes", {})
        auth_user_id = user_attributes.get("sub")
        email = user_attributes.get("email") or None

        if not auth_user_id:
            logger.error("Missing sub in user attributes")
            return event

        identity = get_identity_service().resolve_user_identity(auth_user_id, email)
        logger.info(f"Identity resolved: {identity['userId']} for auth user {auth_user_id}")
        return event

    except Exception as e:
        logger.exception(f"Error in post-authentication trigger: {str(e)}")
        # Never block sign-in on storage problems
        return event
