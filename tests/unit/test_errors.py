"""Tests for error handling utilities."""

from src.utils.errors import AppError, ErrorCode, handle_error


class TestAppError:
    """Tests for AppError class."""

    def test_app_error_with_message(self) -> None:
        """Test creating AppError with message."""
        error = AppError(ErrorCode.NOT_FOUND, "Appointment not found")

        assert error.error_code == ErrorCode.NOT_FOUND
        assert error.message == "Appointment not found"
        assert error.details == {}
        assert str(error) == "Appointment not found"

    def test_app_error_with_details(self) -> None:
        """Test creating AppError with details."""
        details = {"appointmentId": "APPOINTMENT#123"}
        error = AppError(ErrorCode.NOT_FOUND, "Appointment not found", details)

        assert error.details == details

    def test_app_error_to_dict(self) -> None:
        """Test converting AppError to dict flattens details."""
        error = AppError(ErrorCode.SLOT_UNAVAILABLE, "Taken", {"reason": "Time slot already booked"})

        result = error.to_dict()

        assert result == {
            "errorCode": "SLOT_UNAVAILABLE",
            "message": "Taken",
            "reason": "Time slot already booked",
        }


class TestHandleError:
    """Tests for handle_error function."""

    def test_handle_app_error(self) -> None:
        """Test handling AppError returns error dict."""
        error = AppError(ErrorCode.INVALID_INPUT, "Bad request", {"field": "start_time"})

        result = handle_error(error)

        assert result["errorCode"] == ErrorCode.INVALID_INPUT
        assert result["field"] == "start_time"

    def test_handle_generic_exception(self) -> None:
        """Test handling generic exception hides the internal message."""
        result = handle_error(ValueError("connection string leaked"))

        assert result["errorCode"] == ErrorCode.INTERNAL_ERROR
        assert "leaked" not in result["message"]


class TestErrorCode:
    """Tests for ErrorCode constants."""

    def test_error_codes_defined(self) -> None:
        """Test that booking and identity error codes are defined."""
        assert ErrorCode.SESSION_EXPIRED == "SESSION_EXPIRED"
        assert ErrorCode.INCOMPLETE_BOOKING == "INCOMPLETE_BOOKING"
        assert ErrorCode.SLOT_UNAVAILABLE == "SLOT_UNAVAILABLE"
        assert ErrorCode.INVALID_TOKEN == "INVALID_TOKEN"
        assert ErrorCode.IDENTITY_NOT_FOUND == "IDENTITY_NOT_FOUND"
        assert ErrorCode.IDENTITY_RESOLUTION_ERROR == "IDENTITY_RESOLUTION_ERROR"
