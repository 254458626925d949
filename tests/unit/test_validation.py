"""Tests for validation utilities."""

from datetime import datetime, timedelta, timezone

import pytest

from src.utils.errors import AppError, ErrorCode
from src.utils.validation import (
    SECTION_KEY_PATTERN,
    TEMPLATE_KEY_PATTERN,
    parse_int,
    require_fields,
    sanitize_input,
    validate_booking_time,
    validate_choice,
    validate_date,
    validate_key,
    validate_meeting,
    validate_multilingual_text,
    validate_time,
    validate_timezone,
    validate_user_details,
)


class TestValidateTime:
    """Tests for validate_time."""

    def test_valid_time(self) -> None:
        assert validate_time("09:30", "start_time") == "09:30"

    def test_seconds_are_trimmed(self) -> None:
        assert validate_time("14:00:00", "start_time") == "14:00"

    @pytest.mark.parametrize("value", ["9:30", "24:00", "12:60", "noon", None])
    def test_invalid_time(self, value: object) -> None:
        with pytest.raises(AppError) as exc_info:
            validate_time(value, "start_time")

        assert exc_info.value.error_code == ErrorCode.INVALID_INPUT
        assert exc_info.value.details["field"] == "start_time"


class TestValidateDate:
    """Tests for validate_date."""

    def test_valid_date(self) -> None:
        assert validate_date("2025-03-10", "date") == "2025-03-10"

    def test_impossible_date(self) -> None:
        with pytest.raises(AppError, match="not a valid date"):
            validate_date("2025-02-30", "date")

    def test_wrong_format(self) -> None:
        with pytest.raises(AppError, match="YYYY-MM-DD"):
            validate_date("10/03/2025", "date")


class TestValidateUserDetails:
    """Tests for validate_user_details."""

    def test_valid_details_are_cleaned(self) -> None:
        details = {
            "full_name": "  Kim Minji ",
            "email": "Minji@Example.com",
            "phone": "010-1234-5678",
            "notes": "<b>Prompt design</b>",
        }

        result = validate_user_details(details)

        assert result == {
            "full_name": "Kim Minji",
            "email": "minji@example.com",
            "phone": "010-1234-5678",
            "notes": "bPrompt design/b",
        }

    def test_short_name(self) -> None:
        with pytest.raises(AppError) as exc_info:
            validate_user_details({"full_name": "K", "email": "k@example.com"})

        assert exc_info.value.details["field"] == "full_name"

    def test_invalid_email(self) -> None:
        with pytest.raises(AppError) as exc_info:
            validate_user_details({"full_name": "Kim", "email": "not-an-email"})

        assert exc_info.value.error_code == ErrorCode.INVALID_EMAIL

    def test_invalid_phone(self) -> None:
        with pytest.raises(AppError) as exc_info:
            validate_user_details({"full_name": "Kim", "email": "k@example.com", "phone": "call me"})

        assert exc_info.value.error_code == ErrorCode.INVALID_PHONE

    def test_missing_details(self) -> None:
        with pytest.raises(AppError):
            validate_user_details(None)


class TestValidateMeeting:
    """Tests for validate_meeting."""

    def test_online_without_location(self) -> None:
        validate_meeting("online", None)

    def test_offline_requires_location(self) -> None:
        with pytest.raises(AppError) as exc_info:
            validate_meeting("offline", "  ")

        assert exc_info.value.details["field"] == "meeting_location"

    def test_unknown_type(self) -> None:
        with pytest.raises(AppError):
            validate_meeting("phone", None)


class TestValidateBookingTime:
    """Tests for booking window checks (APP_TIMEZONE pinned to UTC)."""

    @pytest.fixture(autouse=True)
    def utc_timezone(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("APP_TIMEZONE", "UTC")

    NOW = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)

    def test_future_slot_accepted(self) -> None:
        validate_booking_time("2025-03-11", "10:00", now=self.NOW)

    def test_past_slot_rejected(self) -> None:
        with pytest.raises(AppError, match="past"):
            validate_booking_time("2025-03-10", "07:00", now=self.NOW)

    def test_less_than_one_hour_ahead(self) -> None:
        with pytest.raises(AppError, match="1 hour"):
            validate_booking_time("2025-03-10", "08:30", now=self.NOW)

    def test_beyond_advance_window(self) -> None:
        far = (self.NOW + timedelta(days=31)).date().isoformat()

        with pytest.raises(AppError, match="30 days"):
            validate_booking_time(far, "10:00", now=self.NOW)

    def test_custom_advance_window(self) -> None:
        far = (self.NOW + timedelta(days=45)).date().isoformat()

        validate_booking_time(far, "10:00", booking_advance_days=60, now=self.NOW)


class TestMiscValidators:
    """Tests for the smaller validators."""

    def test_validate_choice(self) -> None:
        assert validate_choice("ko", ["ko", "en"], "language") == "ko"
        with pytest.raises(AppError) as exc_info:
            validate_choice("jp", ["ko", "en"], "language")
        assert exc_info.value.details["value"] == "jp"

    def test_multilingual_text(self) -> None:
        assert validate_multilingual_text({"ko": " 소개 ", "en": "About"}, "title") == {
            "ko": "소개",
            "en": "About",
        }

    def test_multilingual_text_missing_language(self) -> None:
        with pytest.raises(AppError) as exc_info:
            validate_multilingual_text({"ko": "소개", "en": ""}, "title")

        assert exc_info.value.details["missingLanguages"] == ["en"]

    def test_validate_key(self) -> None:
        assert validate_key("booking_confirmed", TEMPLATE_KEY_PATTERN, "template_key") == "booking_confirmed"
        assert validate_key("hero-banner", SECTION_KEY_PATTERN, "section_key") == "hero-banner"
        with pytest.raises(AppError):
            validate_key("Booking Confirmed", TEMPLATE_KEY_PATTERN, "template_key")

    def test_require_fields(self) -> None:
        data = {"date": "2025-03-10", "start_time": "", "tags": []}

        assert require_fields(data, ["date", "start_time", "tags", "instructor_id"]) == [
            "start_time",
            "tags",
            "instructor_id",
        ]

    def test_sanitize_input(self) -> None:
        assert sanitize_input(" <a onclick=x>javascript:go</a> ") == "a xgo/a"

    def test_validate_timezone(self) -> None:
        assert validate_timezone("Asia/Seoul") == "Asia/Seoul"
        for bad in ("Mars/Phobos", "../etc/passwd", ""):
            with pytest.raises(AppError) as exc_info:
                validate_timezone(bad)
            assert exc_info.value.error_code == ErrorCode.INVALID_INPUT

    def test_parse_int(self) -> None:
        assert parse_int("25", "limit") == 25
        assert parse_int(None, "limit", 20) == 20
        assert parse_int("", "limit", 20) == 20
        for bad in ("abc", True, [1]):
            with pytest.raises(AppError, match="limit must be an integer"):
                parse_int(bad, "limit")
