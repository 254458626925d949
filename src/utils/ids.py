"""
ID normalization utilities for DynamoDB prefixed IDs.

Provides consistent handling of entity ID prefixes (USER#, APPOINTMENT#, etc.)
across all Lambda handlers and utilities.
"""

import uuid
from typing import Optional


def ensure_prefix(prefix: str, id_value: Optional[str]) -> Optional[str]:
    """
    Ensure an ID has the specified prefix.

    Args:
        prefix: Prefix without '#' (e.g., 'USER', 'APPOINTMENT')
        id_value: ID to normalize, may be None

    Returns:
        ID with prefix, or None if input was None

    Examples:
        >>> ensure_prefix('USER', 'abc-123')
        'USER#abc-123'
        >>> ensure_prefix('USER', 'USER#abc-123')
        'USER#abc-123'
        >>> ensure_prefix('APPOINTMENT', None)
        None
    """
    if not id_value:
        return None
    wanted = f"{prefix}#"
    return id_value if id_value.startswith(wanted) else f"{wanted}{id_value}"


def strip_prefix(id_value: Optional[str]) -> str:
    """
    Remove prefix from an ID to get raw UUID.

    Examples:
        >>> strip_prefix('APPOINTMENT#abc-123')
        'abc-123'
        >>> strip_prefix('abc-123')
        'abc-123'
        >>> strip_prefix(None)
        ''
    """
    if not id_value:
        return ""
    hash_index = id_value.find("#")
    return id_value[hash_index + 1 :] if hash_index >= 0 else id_value


def new_id(prefix: str) -> str:
    """Generate a new prefixed UUID (e.g. ``SESSION#<uuid>``)."""
    return f"{prefix}#{uuid.uuid4()}"


# Entity-specific helpers
def ensure_user_id(id_value: Optional[str]) -> Optional[str]:
    """Normalize user ID with USER# prefix."""
    return ensure_prefix("USER", id_value)


def ensure_session_id(id_value: Optional[str]) -> Optional[str]:
    """Normalize booking session ID with SESSION# prefix."""
    return ensure_prefix("SESSION", id_value)


def ensure_appointment_id(id_value: Optional[str]) -> Optional[str]:
    """Normalize appointment ID with APPOINTMENT# prefix."""
    return ensure_prefix("APPOINTMENT", id_value)


def ensure_appointment_type_id(id_value: Optional[str]) -> Optional[str]:
    """Normalize appointment type ID with APPTYPE# prefix."""
    return ensure_prefix("APPTYPE", id_value)


def ensure_notification_id(id_value: Optional[str]) -> Optional[str]:
    """Normalize notification ID with NOTIFICATION# prefix."""
    return ensure_prefix("NOTIFICATION", id_value)


def ensure_template_id(id_value: Optional[str]) -> Optional[str]:
    """Normalize notification template ID with TEMPLATE# prefix."""
    return ensure_prefix("TEMPLATE", id_value)


def ensure_section_id(id_value: Optional[str]) -> Optional[str]:
    """Normalize CMS section ID with SECTION# prefix."""
    return ensure_prefix("SECTION", id_value)


def ensure_block_id(id_value: Optional[str]) -> Optional[str]:
    """Normalize CMS block ID with BLOCK# prefix."""
    return ensure_prefix("BLOCK", id_value)


def ensure_schedule_id(id_value: Optional[str]) -> Optional[str]:
    """Normalize CMS schedule ID with SCHEDULE# prefix."""
    return ensure_prefix("SCHEDULE", id_value)


def appointment_reference(appointment_id: str) -> str:
    """Human-facing booking reference: ``APT-`` plus the last 8 characters, upper-cased."""
    return f"APT-{strip_prefix(appointment_id)[-8:].upper()}"
