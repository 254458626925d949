"""Tests for AppSync event helpers."""

import pytest

from src.utils.appsync_types import (
    get_argument,
    get_argument_required,
    get_caller_id,
    get_claims,
    get_input,
)
from src.utils.errors import AppError, ErrorCode


class TestCallerId:
    """Tests for caller extraction."""

    def test_signed_in_caller(self) -> None:
        event = {"identity": {"sub": "auth-123"}}

        assert get_caller_id(event) == "auth-123"

    def test_anonymous_caller_has_no_id(self) -> None:
        """API-key requests carry identity None."""
        event = {"identity": None}

        assert get_caller_id(event) is None
        assert get_claims(event) == {}


class TestArguments:
    """Tests for argument extraction."""

    def test_get_argument_with_default(self) -> None:
        event = {"arguments": {"limit": 5}}

        assert get_argument(event, "limit") == 5
        assert get_argument(event, "page", 1) == 1

    def test_get_argument_required_missing(self) -> None:
        with pytest.raises(AppError, match="sessionId") as exc_info:
            get_argument_required({"arguments": {}}, "sessionId")

        assert exc_info.value.error_code == ErrorCode.INVALID_INPUT

    def test_get_input_prefers_input_object(self) -> None:
        event = {"arguments": {"sessionId": "S1", "input": {"step": "user_details"}}}

        assert get_input(event) == {"step": "user_details"}

    def test_get_input_falls_back_to_arguments(self) -> None:
        event = {"arguments": {"sessionId": "S1"}}

        assert get_input(event) == {"sessionId": "S1"}
