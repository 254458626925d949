"""Tests for content storage helpers."""

from typing import Any, Dict

import pytest

from src.utils.content import (
    apply_content_action,
    create_version,
    find_section_by_key,
    get_block,
    latest_version_number,
    list_blocks,
    list_versions,
    localize,
    snapshot_fields,
    update_record,
)
from src.utils.errors import AppError


@pytest.fixture
def section(dynamodb_tables: Dict[str, Any]) -> Dict[str, Any]:
    item = {
        "sectionId": "SECTION#hero",
        "sectionKey": "hero",
        "title": {"ko": "소개", "en": "About"},
        "status": "draft",
        "visibility": "public",
        "sortOrder": 0,
        "versionNumber": 1,
        "createdAt": "2025-03-01T00:00:00+00:00",
    }
    dynamodb_tables["content_sections"].put_item(Item=item)
    return item


def _block(dynamodb_tables: Dict[str, Any], block_id: str, sort_order: int) -> Dict[str, Any]:
    item = {
        "sectionId": "SECTION#hero",
        "blockId": block_id,
        "blockType": "text_rich",
        "content": {"body": {"ko": "본문", "en": "Body"}},
        "sortOrder": sort_order,
        "isActive": True,
        "createdAt": "2025-03-01T00:00:00+00:00",
    }
    dynamodb_tables["content_blocks"].put_item(Item=item)
    return item


class TestLookups:
    """Tests for section and block lookups."""

    def test_find_section_by_key(self, section: Dict[str, Any]) -> None:
        found = find_section_by_key("hero")

        assert found is not None
        assert found["sectionId"] == "SECTION#hero"
        assert find_section_by_key("missing") is None

    def test_block_lookup_and_ordering(self, dynamodb_tables: Dict[str, Any], section: Dict[str, Any]) -> None:
        _block(dynamodb_tables, "BLOCK#b", 2)
        _block(dynamodb_tables, "BLOCK#a", 1)

        assert [b["blockId"] for b in list_blocks("SECTION#hero")] == ["BLOCK#a", "BLOCK#b"]
        block = get_block("BLOCK#b")
        assert block is not None and block["sortOrder"] == 2
        assert get_block("BLOCK#missing") is None


class TestVersions:
    """Tests for version snapshots."""

    def test_version_numbers_increase(self, dynamodb_tables: Dict[str, Any], section: Dict[str, Any]) -> None:
        assert latest_version_number("SECTION#hero") == 0

        create_version("section", "SECTION#hero", snapshot_fields("section", section), "USER#admin")
        create_version("section", "SECTION#hero", {"title": {"ko": "새", "en": "New"}}, None, "Retitle")

        versions = list_versions("SECTION#hero")
        assert [v["versionNumber"] for v in versions] == [2, 1]
        assert versions[0]["changeSummary"] == "Retitle"
        assert latest_version_number("SECTION#hero") == 2
        assert list_versions("SECTION#hero", only_published=True) == []

    def test_snapshot_fields_by_type(self, section: Dict[str, Any]) -> None:
        snapshot = snapshot_fields("section", {**section, "status": "published"})

        assert "status" not in snapshot
        assert snapshot["title"] == {"ko": "소개", "en": "About"}


class TestContentActions:
    """Tests for publish/unpublish/archive."""

    def test_publish_section(self, section: Dict[str, Any]) -> None:
        updated = apply_content_action("section", "SECTION#hero", "publish")

        assert updated["status"] == "published"
        assert updated["lastPublishedVersion"] == 1
        assert "publishedAt" in updated

    def test_archive_section(self, section: Dict[str, Any]) -> None:
        assert apply_content_action("section", "SECTION#hero", "archive")["status"] == "archived"

    def test_unpublish_block(self, dynamodb_tables: Dict[str, Any], section: Dict[str, Any]) -> None:
        _block(dynamodb_tables, "BLOCK#a", 1)

        assert apply_content_action("block", "BLOCK#a", "unpublish")["isActive"] is False

    def test_missing_content(self, dynamodb_tables: Dict[str, Any]) -> None:
        with pytest.raises(AppError, match="not found"):
            apply_content_action("section", "SECTION#gone", "publish")

    def test_update_record_removes_fields(self, dynamodb_tables: Dict[str, Any], section: Dict[str, Any]) -> None:
        update_record("section", section, {"scheduledPublishAt": "2030-01-01T00:00:00+00:00"})

        updated = update_record("section", section, {"status": "draft"}, remove=["scheduledPublishAt"])

        assert "scheduledPublishAt" not in updated


class TestLocalize:
    """Tests for multilingual flattening."""

    def test_nested_values(self) -> None:
        value = {"title": {"ko": "소개", "en": "About"}, "items": [{"label": {"ko": "하나", "en": ""}}], "n": 3}

        assert localize(value, "en") == {"title": "About", "items": [{"label": "하나"}], "n": 3}

    def test_korean_default(self) -> None:
        assert localize({"ko": "소개", "en": "About"}, "ko") == "소개"
