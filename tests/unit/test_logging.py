"""Tests for logging utilities."""

import json
from typing import Any, Dict

import pytest

from src.utils.logging import StructuredLogger, get_correlation_id, get_logger


class TestStructuredLogger:
    """Tests for StructuredLogger class."""

    def test_logger_initialization(self) -> None:
        """Test logger initializes with correlation ID."""
        logger = StructuredLogger("test", "test-id-123")

        assert logger.correlation_id == "test-id-123"

    def test_logger_generates_correlation_id(self) -> None:
        """Test logger generates correlation ID if not provided."""
        logger = StructuredLogger("test")

        assert logger.correlation_id

    def test_info_logs_json(self, capsys: Any) -> None:
        """Test info logging outputs JSON."""
        logger = StructuredLogger("test", "test-id")

        logger.info("Booking completed", appointment_id="APPOINTMENT#1")

        log_entry = json.loads(capsys.readouterr().out.strip())
        assert log_entry["level"] == "INFO"
        assert log_entry["message"] == "Booking completed"
        assert log_entry["correlationId"] == "test-id"
        assert log_entry["appointment_id"] == "APPOINTMENT#1"
        assert "timestamp" in log_entry

    def test_error_logs_json(self, capsys: Any) -> None:
        """Test error logging outputs JSON."""
        logger = StructuredLogger("test", "test-id")

        logger.error("Error message", error="details")

        log_entry = json.loads(capsys.readouterr().out.strip())
        assert log_entry["level"] == "ERROR"
        assert log_entry["error"] == "details"

    def test_debug_suppressed_at_info_level(self, capsys: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        """Debug entries are dropped when LOG_LEVEL is INFO."""
        monkeypatch.setenv("LOG_LEVEL", "INFO")
        logger = StructuredLogger("test", "test-id")

        logger.debug("Noise")

        assert capsys.readouterr().out == ""

    def test_debug_emitted_at_debug_level(self, capsys: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        logger = StructuredLogger("test", "test-id")

        logger.debug("Debug message", data={"key": "value"})

        log_entry = json.loads(capsys.readouterr().out.strip())
        assert log_entry["level"] == "DEBUG"
        assert log_entry["data"] == {"key": "value"}

    def test_none_values_filtered(self, capsys: Any) -> None:
        """Test that None values are filtered from logs."""
        logger = StructuredLogger("test", "test-id")

        logger.info("Test", value=None, other="present")

        log_entry = json.loads(capsys.readouterr().out.strip())
        assert "value" not in log_entry
        assert log_entry["other"] == "present"

    def test_exception_includes_traceback(self, capsys: Any) -> None:
        logger = get_logger("test", "test-id")

        try:
            raise RuntimeError("boom")
        except RuntimeError:
            logger.exception("Failed")

        log_entry = json.loads(capsys.readouterr().out.strip())
        assert log_entry["level"] == "ERROR"
        assert "RuntimeError: boom" in log_entry["traceback"]


class TestGetCorrelationId:
    """Tests for get_correlation_id function."""

    def test_extract_from_appsync_request_context(self) -> None:
        """Test extracting correlation ID from AppSync request context."""
        event = {"requestContext": {"requestId": "appsync-request-123"}}

        assert get_correlation_id(event) == "appsync-request-123"

    def test_extract_from_custom_header(self) -> None:
        """Test extracting correlation ID from custom header."""
        event = {"request": {"headers": {"x-correlation-id": "custom-id-456"}}}

        assert get_correlation_id(event) == "custom-id-456"

    def test_generate_new_id_if_not_found(self) -> None:
        """Test generating new ID if not found in event."""
        event: Dict[str, Any] = {}

        assert get_correlation_id(event)

    def test_appsync_context_takes_precedence(self) -> None:
        """Test that AppSync request context takes precedence."""
        event = {
            "requestContext": {"requestId": "appsync-123"},
            "request": {"headers": {"x-correlation-id": "header-456"}},
        }

        assert get_correlation_id(event) == "appsync-123"
