"""Tests for authorization utilities."""

from typing import Any, Dict

import pytest

from src.utils.auth import (
    can_access_appointment,
    derive_role,
    effective_role,
    get_caller_identity,
    get_groups,
    is_admin,
    is_admin_identity,
    require_admin,
    require_appointment_access,
    require_caller_identity,
    require_role,
)
from src.utils.errors import AppError, ErrorCode
from tests.unit.fixtures import make_event, make_profile


class TestGroups:
    """Tests for group and role derivation."""

    def test_groups_as_list(self) -> None:
        event = {"identity": {"claims": {"cognito:groups": ["ADMIN", "member"]}}}

        assert get_groups(event) == ["ADMIN", "member"]

    def test_groups_as_comma_string(self) -> None:
        event = {"identity": {"claims": {"cognito:groups": "instructor, verified"}}}

        assert get_groups(event) == ["instructor", "verified"]

    def test_anonymous_has_no_groups(self) -> None:
        assert get_groups({"identity": None}) == []

    def test_derive_role_highest_wins(self) -> None:
        assert derive_role(["member", "Instructor", "moderator"]) == "moderator"
        assert derive_role([]) == "member"
        assert derive_role(["unknown"]) == "member"

    def test_is_admin(self) -> None:
        assert is_admin({"identity": {"claims": {"cognito:groups": ["super_admin"]}}}) is True
        assert is_admin({"identity": {"claims": {"cognito:groups": ["instructor"]}}}) is False

    def test_profile_role_upgrades(self) -> None:
        event = {"identity": {"claims": {"cognito:groups": ["member"]}}}
        identity = {"userId": "USER#a", "profile": {"role": "admin"}}

        assert effective_role(event, identity) == "admin"  # type: ignore[arg-type]

    def test_profile_role_never_downgrades(self) -> None:
        event = {"identity": {"claims": {"cognito:groups": ["admin"]}}}
        identity = {"userId": "USER#a", "profile": {"role": "member"}}

        assert effective_role(event, identity) == "admin"  # type: ignore[arg-type]


class TestGetCallerIdentity:
    """Tests for get_caller_identity."""

    def test_anonymous_required(self) -> None:
        with pytest.raises(AppError) as exc_info:
            get_caller_identity(make_event())

        assert exc_info.value.error_code == ErrorCode.UNAUTHORIZED

    def test_anonymous_optional(self) -> None:
        assert get_caller_identity(make_event(), required=False) is None

    def test_signed_in(self, dynamodb_tables: Dict[str, Any], user_profile: Dict[str, Any]) -> None:
        identity = get_caller_identity(make_event(profile=user_profile))

        assert identity is not None
        assert identity["userId"] == user_profile["userId"]

    def test_require_caller_identity(self, dynamodb_tables: Dict[str, Any], user_profile: Dict[str, Any]) -> None:
        assert require_caller_identity(make_event(profile=user_profile))["userId"] == user_profile["userId"]
        with pytest.raises(AppError) as exc_info:
            require_caller_identity(make_event())
        assert exc_info.value.error_code == ErrorCode.UNAUTHORIZED

    def test_suspended_forbidden(self, dynamodb_tables: Dict[str, Any]) -> None:
        profile = make_profile("blocked", status="suspended")
        dynamodb_tables["user_profiles"].put_item(Item=profile)

        with pytest.raises(AppError) as exc_info:
            get_caller_identity(make_event(profile=profile))

        assert exc_info.value.error_code == ErrorCode.FORBIDDEN


class TestRequireRole:
    """Tests for role guards."""

    def test_admin_by_profile(self, dynamodb_tables: Dict[str, Any], admin_profile: Dict[str, Any]) -> None:
        identity = require_admin(make_event(profile=admin_profile))

        assert identity["userId"] == admin_profile["userId"]

    def test_admin_by_group(self, dynamodb_tables: Dict[str, Any], user_profile: Dict[str, Any]) -> None:
        event = make_event(profile=user_profile, groups=["admin"])

        assert require_admin(event)["userId"] == user_profile["userId"]
        assert is_admin_identity(event, get_caller_identity(event)) is True

    def test_member_rejected(self, dynamodb_tables: Dict[str, Any], user_profile: Dict[str, Any]) -> None:
        with pytest.raises(AppError) as exc_info:
            require_role(make_event(profile=user_profile), ["instructor", "admin"])

        assert exc_info.value.error_code == ErrorCode.FORBIDDEN


class TestAppointmentAccess:
    """Tests for participant checks."""

    APPOINTMENT = {"userId": "USER#s", "instructorId": "USER#t"}

    def test_participants(self) -> None:
        assert can_access_appointment("USER#s", self.APPOINTMENT) is True
        assert can_access_appointment("USER#t", self.APPOINTMENT) is True

    def test_admin_override(self) -> None:
        assert can_access_appointment("USER#x", self.APPOINTMENT, admin=True) is True

    def test_outsider_rejected(self) -> None:
        with pytest.raises(AppError) as exc_info:
            require_appointment_access("USER#x", self.APPOINTMENT)

        assert exc_info.value.error_code == ErrorCode.FORBIDDEN
