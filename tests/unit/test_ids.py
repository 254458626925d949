"""Tests for src/utils/ids.py - ID normalization utilities."""

from src.utils.ids import (
    appointment_reference,
    ensure_appointment_id,
    ensure_prefix,
    ensure_section_id,
    ensure_session_id,
    ensure_user_id,
    new_id,
    strip_prefix,
)


class TestEnsurePrefix:
    """Tests for the ensure_prefix function."""

    def test_adds_prefix_when_missing(self) -> None:
        """Test that prefix is added when not present."""
        assert ensure_prefix("USER", "abc-123") == "USER#abc-123"

    def test_preserves_existing_prefix(self) -> None:
        """Test that existing prefix is not duplicated."""
        assert ensure_prefix("USER", "USER#abc-123") == "USER#abc-123"

    def test_returns_none_for_empty_input(self) -> None:
        assert ensure_prefix("USER", None) is None
        assert ensure_prefix("USER", "") is None

    def test_other_prefix_is_wrapped(self) -> None:
        """An ID carrying a different prefix gets this one in front."""
        assert ensure_prefix("USER", "SESSION#abc") == "USER#SESSION#abc"


class TestStripPrefix:
    """Tests for the strip_prefix function."""

    def test_strips_prefix(self) -> None:
        assert strip_prefix("APPOINTMENT#abc-123") == "abc-123"

    def test_unprefixed_id_unchanged(self) -> None:
        assert strip_prefix("abc-123") == "abc-123"

    def test_none_becomes_empty(self) -> None:
        assert strip_prefix(None) == ""


class TestEntityHelpers:
    """Tests for entity-specific helpers."""

    def test_entity_prefixes(self) -> None:
        assert ensure_user_id("u1") == "USER#u1"
        assert ensure_session_id("s1") == "SESSION#s1"
        assert ensure_appointment_id("a1") == "APPOINTMENT#a1"
        assert ensure_section_id("hero") == "SECTION#hero"

    def test_new_id_is_unique_and_prefixed(self) -> None:
        first = new_id("SESSION")
        second = new_id("SESSION")

        assert first.startswith("SESSION#")
        assert first != second


class TestAppointmentReference:
    """Tests for the human-facing booking reference."""

    def test_last_eight_characters_uppercased(self) -> None:
        reference = appointment_reference("APPOINTMENT#3f2a9c1e-0b7d-4e55-9a61-2c4d8e9fab12")

        assert reference == "APT-8E9FAB12"
