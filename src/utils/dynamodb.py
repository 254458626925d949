"""
Centralized DynamoDB table access utilities.

Provides singleton-pattern table accessors with lazy initialization
and test monkeypatch support, plus small helpers shared by every handler
(update expressions, pagination, number conversion).
"""

import json
import os
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import boto3

if TYPE_CHECKING:
    from mypy_boto3_dynamodb import DynamoDBServiceResource
    from mypy_boto3_dynamodb.service_resource import Table


# Module-level cache for test overrides
_table_overrides: dict[str, Optional["Table"]] = {}


def get_required_env(name: str, default: Optional[str] = None) -> str:
    """Get a required environment variable.

    In Lambda/production, the env var must be set. For tests, a default can be
    provided to allow the code to run in mocked environments.

    Raises:
        ValueError: If the env var is not set and no default is provided
    """
    value = os.getenv(name, default)
    if value is None:
        raise ValueError(f"Required environment variable '{name}' is not set")
    return value


def _get_dynamodb() -> "DynamoDBServiceResource":
    """Get DynamoDB resource with optional endpoint override for LocalStack."""
    return boto3.resource("dynamodb", endpoint_url=os.getenv("DYNAMODB_ENDPOINT"))


class TableAccessor:
    """Centralized access to DynamoDB tables with environment-based naming."""

    _instance: Optional["TableAccessor"] = None

    def __new__(cls) -> "TableAccessor":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @staticmethod
    def _table(key: str, env_name: str) -> "Table":
        if override := _table_overrides.get(key):
            return override
        return _get_dynamodb().Table(get_required_env(env_name))

    @property
    def user_profiles(self) -> "Table":
        """User profiles (PK=userId, GSIs: email-index, authUserId-index)."""
        return self._table("user_profiles", "USER_PROFILES_TABLE_NAME")

    @property
    def booking_sessions(self) -> "Table":
        """Booking sessions (PK=sessionId, GSIs: userId-index, sessionToken-index)."""
        return self._table("booking_sessions", "BOOKING_SESSIONS_TABLE_NAME")

    @property
    def appointments(self) -> "Table":
        """Appointments (PK=appointmentId, GSIs by instructor/date and by user)."""
        return self._table("appointments", "APPOINTMENTS_TABLE_NAME")

    @property
    def appointment_types(self) -> "Table":
        """Appointment types (PK=appointmentTypeId, GSI: instructorId-index)."""
        return self._table("appointment_types", "APPOINTMENT_TYPES_TABLE_NAME")

    @property
    def instructor_availability(self) -> "Table":
        """Weekly availability rules (PK=instructorId, SK=availabilityId)."""
        return self._table("instructor_availability", "INSTRUCTOR_AVAILABILITY_TABLE_NAME")

    @property
    def time_blocks(self) -> "Table":
        """Blocked periods (PK=instructorId, SK=blockId)."""
        return self._table("time_blocks", "TIME_BLOCKS_TABLE_NAME")

    @property
    def notifications(self) -> "Table":
        """Notifications (PK=userId, SK=notificationId, GSI: deliveryStatus-scheduledFor-index)."""
        return self._table("notifications", "NOTIFICATIONS_TABLE_NAME")

    @property
    def notification_templates(self) -> "Table":
        """Notification templates (PK=templateId, GSI: templateKey-index)."""
        return self._table("notification_templates", "NOTIFICATION_TEMPLATES_TABLE_NAME")

    @property
    def notification_preferences(self) -> "Table":
        """Notification preferences (PK=userId, SK=category)."""
        return self._table("notification_preferences", "NOTIFICATION_PREFERENCES_TABLE_NAME")

    @property
    def content_sections(self) -> "Table":
        """CMS sections (PK=sectionId, GSI: sectionKey-index)."""
        return self._table("content_sections", "CONTENT_SECTIONS_TABLE_NAME")

    @property
    def content_blocks(self) -> "Table":
        """CMS blocks (PK=sectionId, SK=blockId, GSI: blockId-index)."""
        return self._table("content_blocks", "CONTENT_BLOCKS_TABLE_NAME")

    @property
    def content_versions(self) -> "Table":
        """CMS version snapshots (PK=contentId, SK=versionNumber)."""
        return self._table("content_versions", "CONTENT_VERSIONS_TABLE_NAME")

    @property
    def content_schedules(self) -> "Table":
        """CMS schedules (PK=scheduleId, GSI: status-scheduledTime-index)."""
        return self._table("content_schedules", "CONTENT_SCHEDULES_TABLE_NAME")


# Singleton instance for import
tables = TableAccessor()


def build_update_expression(
    fields: Dict[str, Any], remove: Optional[List[str]] = None
) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
    """
    Build a SET/REMOVE update expression with attribute-name placeholders.

    Every attribute goes through ExpressionAttributeNames so reserved words
    (status, data, role, name, ...) never need special casing.

    Returns:
        (UpdateExpression, ExpressionAttributeNames, ExpressionAttributeValues)
    """
    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    set_parts: List[str] = []
    for index, (attr, value) in enumerate(fields.items()):
        names[f"#f{index}"] = attr
        values[f":v{index}"] = to_dynamo(value)
        set_parts.append(f"#f{index} = :v{index}")

    expression = "SET " + ", ".join(set_parts) if set_parts else ""
    if remove:
        remove_parts = []
        for index, attr in enumerate(remove):
            names[f"#r{index}"] = attr
            remove_parts.append(f"#r{index}")
        expression = f"{expression} REMOVE {', '.join(remove_parts)}".strip()
    return expression, names, values


def query_all(table: "Table", **kwargs: Any) -> List[Dict[str, Any]]:
    """Run a query and follow LastEvaluatedKey until every page is read."""
    items: List[Dict[str, Any]] = []
    while True:
        response = table.query(**kwargs)
        items.extend(response.get("Items", []))
        last_key = response.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


def scan_all(table: "Table", **kwargs: Any) -> List[Dict[str, Any]]:
    """Run a scan and follow LastEvaluatedKey until every page is read."""
    items: List[Dict[str, Any]] = []
    while True:
        response = table.scan(**kwargs)
        items.extend(response.get("Items", []))
        last_key = response.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return from_dynamo(value)
    return str(value)


def to_dynamo(value: Any) -> Any:
    """Convert floats (including nested ones) to Decimal for boto3."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, (dict, list)):
        return json.loads(json.dumps(value, default=_json_default), parse_float=Decimal)
    return value


def from_dynamo(value: Any) -> Any:
    """Convert Decimal values (including nested ones) back to int/float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value


# Test utilities
def override_table(table_name: str, table: Optional["Table"]) -> None:
    """Override a table for testing. Set to None to clear override."""
    _table_overrides[table_name] = table


def clear_all_overrides() -> None:
    """Clear all table overrides (call in test teardown)."""
    _table_overrides.clear()


def reset_singleton() -> None:
    """Reset the singleton instance (for testing isolation)."""
    TableAccessor._instance = None
