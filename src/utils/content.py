"""
Content management storage helpers.

Sections hold multilingual page regions; blocks are typed units inside a
section. Every change to a section or block can be snapshotted into
``content_versions`` (keyed by content id and a monotonically increasing
version number).
"""

from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Key

from .clock import now_iso
from .dynamodb import build_update_expression, from_dynamo, query_all, tables, to_dynamo
from .errors import AppError, ErrorCode
from .validation import SUPPORTED_LANGUAGES

CONTENT_TYPES = ["section", "block"]
SECTION_STATUSES = ["draft", "published", "archived", "scheduled"]
VISIBILITIES = ["public", "members_only", "admin_only"]
BLOCK_TYPES = [
    "hero",
    "feature_grid",
    "stats",
    "timeline",
    "text_rich",
    "image_gallery",
    "video_embed",
    "cta",
    "testimonial",
    "faq",
]
SCHEDULE_TYPES = ["publish", "unpublish", "archive"]

# Fields copied out of a version snapshot onto the live record
SECTION_SNAPSHOT_FIELDS = [
    "title",
    "slug",
    "description",
    "visibility",
    "sortOrder",
    "isFeatured",
    "settings",
    "template",
]
BLOCK_SNAPSHOT_FIELDS = ["blockType", "blockKey", "content", "metadata", "sortOrder", "isActive", "visibility"]


def get_section(section_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not section_id:
        return None
    item = tables.content_sections.get_item(Key={"sectionId": section_id}).get("Item")
    return from_dynamo(item) if item else None


def require_section(section_id: Optional[str]) -> Dict[str, Any]:
    section = get_section(section_id)
    if section is None:
        raise AppError(ErrorCode.NOT_FOUND, f"Section {section_id} not found")
    return section


def find_section_by_key(section_key: str) -> Optional[Dict[str, Any]]:
    items = query_all(
        tables.content_sections,
        IndexName="sectionKey-index",
        KeyConditionExpression=Key("sectionKey").eq(section_key),
    )
    return from_dynamo(items[0]) if items else None


def get_block(block_id: Optional[str]) -> Optional[Dict[str, Any]]:
    """Look a block up by id alone (blocks are stored under their section)."""
    if not block_id:
        return None
    items = query_all(
        tables.content_blocks,
        IndexName="blockId-index",
        KeyConditionExpression=Key("blockId").eq(block_id),
    )
    if not items:
        return None
    # The index may project keys only; read the full item from the table
    item = tables.content_blocks.get_item(
        Key={"sectionId": items[0]["sectionId"], "blockId": block_id}
    ).get("Item")
    return from_dynamo(item) if item else None


def require_block(block_id: Optional[str]) -> Dict[str, Any]:
    block = get_block(block_id)
    if block is None:
        raise AppError(ErrorCode.NOT_FOUND, f"Block {block_id} not found")
    return block


def list_blocks(section_id: str) -> List[Dict[str, Any]]:
    """Blocks of a section ordered by sortOrder."""
    items = query_all(tables.content_blocks, KeyConditionExpression=Key("sectionId").eq(section_id))
    blocks = [from_dynamo(i) for i in items]
    blocks.sort(key=lambda b: (b.get("sortOrder", 0), b.get("createdAt", "")))
    return blocks


def get_content(content_type: str, content_id: str) -> Optional[Dict[str, Any]]:
    if content_type == "section":
        return get_section(content_id)
    return get_block(content_id)


def latest_version_number(content_id: str) -> int:
    response = tables.content_versions.query(
        KeyConditionExpression=Key("contentId").eq(content_id),
        ScanIndexForward=False,
        Limit=1,
    )
    items = response.get("Items", [])
    return int(items[0]["versionNumber"]) if items else 0


def snapshot_fields(content_type: str, record: Dict[str, Any]) -> Dict[str, Any]:
    fields = SECTION_SNAPSHOT_FIELDS if content_type == "section" else BLOCK_SNAPSHOT_FIELDS
    return {f: record[f] for f in fields if f in record}


def create_version(
    content_type: str,
    content_id: str,
    content_data: Dict[str, Any],
    created_by: Optional[str],
    change_summary: Optional[str] = None,
    change_type: str = "update",
    is_major: bool = False,
    version_number: Optional[int] = None,
) -> Dict[str, Any]:
    """Store a snapshot. The version number defaults to the latest one plus one."""
    version: Dict[str, Any] = {
        "contentId": content_id,
        "versionNumber": version_number or latest_version_number(content_id) + 1,
        "contentType": content_type,
        "contentData": content_data,
        "changeType": change_type,
        "isMajorVersion": bool(is_major),
        "isPublished": False,
        "createdAt": now_iso(),
    }
    if created_by:
        version["createdBy"] = created_by
    if change_summary:
        version["changeSummary"] = change_summary
    tables.content_versions.put_item(Item=to_dynamo(version))
    return version


def list_versions(content_id: str, only_published: bool = False) -> List[Dict[str, Any]]:
    """Versions of a content record, newest first."""
    items = query_all(
        tables.content_versions,
        KeyConditionExpression=Key("contentId").eq(content_id),
        ScanIndexForward=False,
    )
    versions = [from_dynamo(i) for i in items]
    if only_published:
        versions = [v for v in versions if v.get("isPublished")]
    return versions


def update_record(
    content_type: str,
    record: Dict[str, Any],
    fields: Dict[str, Any],
    remove: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Apply a SET (and optional REMOVE) update to a live section or block and return the new item."""
    fields = {**fields, "updatedAt": now_iso()}
    expression, names, values = build_update_expression(fields, remove)
    if content_type == "section":
        table = tables.content_sections
        key = {"sectionId": record["sectionId"]}
    else:
        table = tables.content_blocks
        key = {"sectionId": record["sectionId"], "blockId": record["blockId"]}
    response = table.update_item(
        Key=key,
        UpdateExpression=expression,
        ExpressionAttributeNames=names,
        ExpressionAttributeValues=values,
        ReturnValues="ALL_NEW",
    )
    return from_dynamo(response["Attributes"])  # type: ignore[no-any-return]


def apply_content_action(content_type: str, content_id: str, action: str) -> Dict[str, Any]:
    """
    Run a publish/unpublish/archive action against a live record.

    Sections change status; blocks toggle ``isActive``.

    Raises:
        AppError: NOT_FOUND when the content no longer exists
    """
    record = get_content(content_type, content_id)
    if record is None:
        raise AppError(ErrorCode.NOT_FOUND, f"{content_type} {content_id} not found")

    remove: List[str] = []
    if content_type == "section":
        remove = ["scheduledPublishAt"]
        if action == "publish":
            fields: Dict[str, Any] = {
                "status": "published",
                "publishedAt": now_iso(),
                "lastPublishedVersion": record.get("versionNumber", 1),
            }
        elif action == "unpublish":
            fields = {"status": "draft"}
        else:
            fields = {"status": "archived"}
    else:
        fields = {"isActive": action == "publish"}
    return update_record(content_type, record, fields, remove)


def localize(value: Any, language: str) -> Any:
    """
    Flatten ``{ko, en}`` objects to one language, recursively.

    Missing translations fall back to Korean.
    """
    if isinstance(value, dict):
        keys = set(value)
        if keys and keys <= set(SUPPORTED_LANGUAGES) and "ko" in keys:
            return value.get(language) or value.get("ko")
        return {k: localize(v, language) for k, v in value.items()}
    if isinstance(value, list):
        return [localize(v, language) for v in value]
    return value
