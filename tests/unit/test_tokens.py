"""Tests for booking session tokens."""

from src.utils.tokens import (
    TOKEN_MAX_AGE_HOURS,
    compare_tokens,
    generate_secure_token,
    to_base36,
    validate_token_format,
)

NOW_MS = 1_741_600_000_000
HOUR_MS = 3600 * 1000


class TestGenerateSecureToken:
    """Tests for token generation."""

    def test_token_shape(self) -> None:
        token = generate_secure_token(now_ms=NOW_MS)

        prefix, timestamp = token.split("_", 1)[0], token.rsplit("_", 1)[-1]
        assert prefix == "booking"
        assert int(timestamp, 36) == NOW_MS

    def test_tokens_are_unique(self) -> None:
        assert generate_secure_token() != generate_secure_token()

    def test_base36(self) -> None:
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"


class TestValidateTokenFormat:
    """Tests for validate_token_format."""

    def test_fresh_token_is_valid(self) -> None:
        token = generate_secure_token(now_ms=NOW_MS)

        result = validate_token_format(token, now_ms=NOW_MS + HOUR_MS)

        assert result == {"valid": True, "expired": False}

    def test_old_token_is_expired(self) -> None:
        token = generate_secure_token(now_ms=NOW_MS)

        result = validate_token_format(token, now_ms=NOW_MS + (TOKEN_MAX_AGE_HOURS * HOUR_MS) + 1)

        assert result == {"valid": False, "expired": True}

    def test_wrong_prefix(self) -> None:
        token = generate_secure_token(prefix="other", now_ms=NOW_MS)

        assert validate_token_format(token, now_ms=NOW_MS) == {"valid": False, "expired": False}

    def test_missing_or_short(self) -> None:
        assert validate_token_format(None)["valid"] is False
        assert validate_token_format("booking_x")["valid"] is False

    def test_non_base36_timestamp(self) -> None:
        token = "booking_" + "a" * 43 + "_!!!"

        assert validate_token_format(token) == {"valid": False, "expired": False}


class TestCompareTokens:
    """Tests for compare_tokens."""

    def test_equal_tokens(self) -> None:
        token = generate_secure_token()

        assert compare_tokens(token, token) is True

    def test_different_tokens(self) -> None:
        assert compare_tokens(generate_secure_token(), generate_secure_token()) is False

    def test_missing_tokens(self) -> None:
        assert compare_tokens(None, "booking_x") is False
        assert compare_tokens("booking_x", "") is False
