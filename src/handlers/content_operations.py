"""
Content management Lambda handlers.

Admin operations manage sections, blocks and versions. The public
hierarchy query serves published content to the site.
"""

from typing import Any, Dict, List, Optional

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.appsync_types import get_argument, get_argument_required, get_input  # type: ignore[import-not-found]
    from utils.auth import get_caller_identity, require_admin  # type: ignore[import-not-found]
    from utils.clock import now_iso  # type: ignore[import-not-found]
    from utils.content import (  # type: ignore[import-not-found]
        BLOCK_SNAPSHOT_FIELDS,
        BLOCK_TYPES,
        CONTENT_TYPES,
        SECTION_SNAPSHOT_FIELDS,
        VISIBILITIES,
        create_version,
        find_section_by_key,
        get_content,
        latest_version_number,
        list_blocks,
        list_versions,
        localize,
        require_block,
        require_section,
        snapshot_fields,
        update_record,
    )
    from utils.dynamodb import build_update_expression, from_dynamo, scan_all, tables, to_dynamo  # type: ignore[import-not-found]
    from utils.errors import AppError, ErrorCode  # type: ignore[import-not-found]
    from utils.ids import ensure_block_id, ensure_section_id, new_id  # type: ignore[import-not-found]
    from utils.logging import get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.responses import build_item_response  # type: ignore[import-not-found]
    from utils.validation import SECTION_KEY_PATTERN, parse_int, validate_choice, validate_key, validate_multilingual_text  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.appsync_types import get_argument, get_argument_required, get_input
    from ..utils.auth import get_caller_identity, require_admin
    from ..utils.clock import now_iso
    from ..utils.content import (
        BLOCK_SNAPSHOT_FIELDS,
        BLOCK_TYPES,
        CONTENT_TYPES,
        SECTION_SNAPSHOT_FIELDS,
        VISIBILITIES,
        create_version,
        find_section_by_key,
        get_content,
        latest_version_number,
        list_blocks,
        list_versions,
        localize,
        require_block,
        require_section,
        snapshot_fields,
        update_record,
    )
    from ..utils.dynamodb import build_update_expression, from_dynamo, scan_all, tables, to_dynamo
    from ..utils.errors import AppError, ErrorCode
    from ..utils.ids import ensure_block_id, ensure_section_id, new_id
    from ..utils.logging import get_correlation_id, get_logger
    from ..utils.responses import build_item_response
    from ..utils.validation import (
        SECTION_KEY_PATTERN,
        parse_int,
        validate_choice,
        validate_key,
        validate_multilingual_text,
    )


def _section_fields(payload: Dict[str, Any], creating: bool) -> Dict[str, Any]:
    """Validated section attributes present in ``payload``."""
    fields: Dict[str, Any] = {}
    if creating or "title" in payload:
        fields["title"] = validate_multilingual_text(payload.get("title"), "title")
    if payload.get("slug") is not None:
        fields["slug"] = validate_multilingual_text(payload["slug"], "slug")
    if "description" in payload:
        fields["description"] = payload.get("description")
    if creating or "visibility" in payload:
        fields["visibility"] = validate_choice(payload.get("visibility") or "public", VISIBILITIES, "visibility")
    if creating or "sortOrder" in payload:
        fields["sortOrder"] = parse_int(payload.get("sortOrder"), "sortOrder")
    if creating or "isFeatured" in payload:
        fields["isFeatured"] = bool(payload.get("isFeatured", False))
    for field in ("settings", "template"):
        if field in payload:
            fields[field] = payload[field]
    return fields


def create_content_section(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL mutation: createContentSection(input: {sectionKey, title, slug, description,
    visibility, sortOrder, isFeatured, settings, template})

    New sections start as drafts at version 1.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        admin = require_admin(event)
        payload = get_input(event)

        section_key = validate_key(payload.get("sectionKey"), SECTION_KEY_PATTERN, "sectionKey")
        if find_section_by_key(section_key):
            raise AppError(ErrorCode.ALREADY_EXISTS, f"Section key {section_key} already exists")

        timestamp = now_iso()
        section: Dict[str, Any] = {
            "sectionId": new_id("SECTION"),
            "sectionKey": section_key,
            **_section_fields(payload, creating=True),
            "status": "draft",
            "versionNumber": 1,
            "createdBy": admin["userId"],
            "createdAt": timestamp,
            "updatedAt": timestamp,
        }
        tables.content_sections.put_item(Item=to_dynamo({k: v for k, v in section.items() if v is not None}))
        create_version(
            "section",
            section["sectionId"],
            snapshot_fields("section", section),
            admin["userId"],
            change_type="create",
            version_number=1,
        )
        logger.info("Content section created", section_id=section["sectionId"], section_key=section_key)
        return build_item_response(section)

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to create content section", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to create content section")


def update_content_section(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL mutation: updateContentSection(sectionId, input, changeSummary)

    Each update bumps versionNumber and stores a snapshot of the new state.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        admin = require_admin(event)
        section = require_section(ensure_section_id(get_argument_required(event, "sectionId")))
        payload = get_input(event)

        fields = _section_fields(payload, creating=False)
        if "sectionKey" in payload and payload["sectionKey"] != section["sectionKey"]:
            new_key = validate_key(payload["sectionKey"], SECTION_KEY_PATTERN, "sectionKey")
            if find_section_by_key(new_key):
                raise AppError(ErrorCode.ALREADY_EXISTS, f"Section key {new_key} already exists")
            fields["sectionKey"] = new_key
        if not fields:
            raise AppError(ErrorCode.INVALID_INPUT, "No section fields to update")

        fields["versionNumber"] = max(int(section.get("versionNumber") or 1), latest_version_number(section["sectionId"])) + 1
        fields["updatedBy"] = admin["userId"]
        updated = update_record("section", section, fields)
        create_version(
            "section",
            updated["sectionId"],
            snapshot_fields("section", updated),
            admin["userId"],
            change_summary=get_argument(event, "changeSummary"),
            version_number=updated["versionNumber"],
        )
        logger.info("Content section updated", section_id=updated["sectionId"], version=updated["versionNumber"])
        return build_item_response(updated)

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to update content section", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to update content section")


def delete_content_section(event: Dict[str, Any], context: Any) -> bool:
    """GraphQL mutation: deleteContentSection(sectionId). Blocks go with it; versions are kept."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)
        section = require_section(ensure_section_id(get_argument_required(event, "sectionId")))

        blocks = list_blocks(section["sectionId"])
        with tables.content_blocks.batch_writer() as batch:
            for block in blocks:
                batch.delete_item(Key={"sectionId": section["sectionId"], "blockId": block["blockId"]})
        tables.content_sections.delete_item(Key={"sectionId": section["sectionId"]})
        logger.info("Content section deleted", section_id=section["sectionId"], blocks_deleted=len(blocks))
        return True

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to delete content section", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to delete content section")


def publish_content_section(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL mutation: publishContentSection(sectionId). Publishes the current version."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        admin = require_admin(event)
        section = require_section(ensure_section_id(get_argument_required(event, "sectionId")))

        version_number = int(section.get("versionNumber") or 1)
        _mark_version_published(section["sectionId"], version_number, admin["userId"], None)
        updated = update_record(
            "section",
            section,
            {"status": "published", "publishedAt": now_iso(), "lastPublishedVersion": version_number},
            remove=["scheduledPublishAt"],
        )
        logger.info("Content section published", section_id=updated["sectionId"], version=version_number)
        return build_item_response(updated)

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to publish content section", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to publish content section")


def _block_fields(payload: Dict[str, Any], creating: bool) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    if creating or "blockType" in payload:
        fields["blockType"] = validate_choice(payload.get("blockType"), BLOCK_TYPES, "blockType")
    if creating or "content" in payload:
        content = payload.get("content")
        if not isinstance(content, dict):
            raise AppError(ErrorCode.INVALID_INPUT, "content must be an object", {"field": "content"})
        fields["content"] = content
    if "blockKey" in payload:
        fields["blockKey"] = payload.get("blockKey")
    if "metadata" in payload:
        fields["metadata"] = payload.get("metadata") or {}
    if "sortOrder" in payload:
        fields["sortOrder"] = parse_int(payload.get("sortOrder"), "sortOrder")
    if creating or "isActive" in payload:
        fields["isActive"] = bool(payload.get("isActive", True))
    if creating or "visibility" in payload:
        fields["visibility"] = validate_choice(payload.get("visibility") or "public", VISIBILITIES, "visibility")
    return fields


def create_content_block(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL mutation: createContentBlock(sectionId, input: {blockType, blockKey, content,
    metadata, sortOrder, isActive, visibility})

    Without a sortOrder the block is appended after the section's last block.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        admin = require_admin(event)
        section = require_section(ensure_section_id(get_argument_required(event, "sectionId")))
        payload = get_input(event)

        fields = _block_fields(payload, creating=True)
        if "sortOrder" not in fields:
            existing = list_blocks(section["sectionId"])
            fields["sortOrder"] = max((b.get("sortOrder", 0) for b in existing), default=-1) + 1

        timestamp = now_iso()
        block: Dict[str, Any] = {
            "sectionId": section["sectionId"],
            "blockId": new_id("BLOCK"),
            **fields,
            "createdBy": admin["userId"],
            "createdAt": timestamp,
            "updatedAt": timestamp,
        }
        tables.content_blocks.put_item(Item=to_dynamo({k: v for k, v in block.items() if v is not None}))
        create_version("block", block["blockId"], snapshot_fields("block", block), admin["userId"], change_type="create")
        logger.info("Content block created", section_id=section["sectionId"], block_id=block["blockId"])
        return build_item_response(block)

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to create content block", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to create content block")


def update_content_block(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL mutation: updateContentBlock(blockId, input, changeSummary)."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        admin = require_admin(event)
        block = require_block(ensure_block_id(get_argument_required(event, "blockId")))

        fields = _block_fields(get_input(event), creating=False)
        if not fields:
            raise AppError(ErrorCode.INVALID_INPUT, "No block fields to update")
        fields["updatedBy"] = admin["userId"]
        updated = update_record("block", block, fields)
        create_version(
            "block",
            updated["blockId"],
            snapshot_fields("block", updated),
            admin["userId"],
            change_summary=get_argument(event, "changeSummary"),
        )
        logger.info("Content block updated", block_id=updated["blockId"])
        return build_item_response(updated)

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to update content block", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to update content block")


def delete_content_block(event: Dict[str, Any], context: Any) -> bool:
    """GraphQL mutation: deleteContentBlock(blockId)."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)
        block = require_block(ensure_block_id(get_argument_required(event, "blockId")))
        tables.content_blocks.delete_item(Key={"sectionId": block["sectionId"], "blockId": block["blockId"]})
        logger.info("Content block deleted", block_id=block["blockId"], section_id=block["sectionId"])
        return True

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to delete content block", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to delete content block")


def reorder_content_blocks(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """
    GraphQL mutation: reorderContentBlocks(sectionId, blockIds)

    ``blockIds`` lists blocks of the section in their new order; each gets its
    list position as sortOrder.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)
        section = require_section(ensure_section_id(get_argument_required(event, "sectionId")))
        block_ids = [ensure_block_id(b) for b in get_argument(event, "blockIds") or []]

        existing = {b["blockId"]: b for b in list_blocks(section["sectionId"])}
        unknown = [b for b in block_ids if b not in existing]
        if unknown:
            raise AppError(
                ErrorCode.INVALID_INPUT,
                "Some blocks do not belong to this section",
                {"blockIds": unknown},
            )

        timestamp = now_iso()
        for index, block_id in enumerate(block_ids):
            expression, names, values = build_update_expression({"sortOrder": index, "updatedAt": timestamp})
            tables.content_blocks.update_item(
                Key={"sectionId": section["sectionId"], "blockId": block_id},
                UpdateExpression=expression,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        logger.info("Content blocks reordered", section_id=section["sectionId"], count=len(block_ids))
        return [build_item_response(b) for b in list_blocks(section["sectionId"])]

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to reorder content blocks", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to reorder content blocks")


def _sorted_sections() -> List[Dict[str, Any]]:
    sections = [from_dynamo(s) for s in scan_all(tables.content_sections)]
    sections.sort(key=lambda s: (s.get("sortOrder", 0), s.get("createdAt", "")))
    return sections


def get_admin_content_hierarchy(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """GraphQL query: getAdminContentHierarchy. Every section with every block."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)
        return [{**section, "blocks": list_blocks(section["sectionId"])} for section in _sorted_sections()]

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to get admin content hierarchy", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to get admin content hierarchy")


def get_public_content_hierarchy(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """
    GraphQL query: getPublicContentHierarchy(language)

    Published sections with their active blocks. Members-only content is
    included for signed-in callers. With ``language`` the ``{ko, en}``
    fields are flattened to that language.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        identity = get_caller_identity(event, required=False)
        visible = {"public", "members_only"} if identity else {"public"}
        language: Optional[str] = get_argument(event, "language")

        hierarchy: List[Dict[str, Any]] = []
        for section in _sorted_sections():
            if section.get("status") != "published" or section.get("visibility", "public") not in visible:
                continue
            blocks = [
                b
                for b in list_blocks(section["sectionId"])
                if b.get("isActive", True) and b.get("visibility", "public") in visible
            ]
            entry = {**section, "blocks": blocks}
            hierarchy.append(localize(entry, language) if language else entry)
        return hierarchy

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to get public content hierarchy", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to get public content hierarchy")


def list_content_versions(event: Dict[str, Any], context: Any) -> List[Dict[str, Any]]:
    """GraphQL query: listContentVersions(contentType, contentId, onlyPublished). Newest first."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)
        validate_choice(get_argument(event, "contentType"), CONTENT_TYPES, "contentType")
        content_id = get_argument_required(event, "contentId")
        return list_versions(content_id, bool(get_argument(event, "onlyPublished", False)))

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to list content versions", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to list content versions")


def create_content_version(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GraphQL mutation: createContentVersion(input: {contentType, contentId, contentData, changeSummary, isMajor})."""
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        admin = require_admin(event)
        payload = get_input(event)
        content_type = validate_choice(payload.get("contentType"), CONTENT_TYPES, "contentType")
        content_id = payload.get("contentId")
        content_data = payload.get("contentData")
        if not content_id or not isinstance(content_data, dict):
            raise AppError(ErrorCode.INVALID_INPUT, "contentId and contentData are required")
        if get_content(content_type, content_id) is None:
            raise AppError(ErrorCode.NOT_FOUND, f"{content_type} {content_id} not found")

        return create_version(
            content_type,
            content_id,
            content_data,
            admin["userId"],
            change_summary=payload.get("changeSummary"),
            is_major=bool(payload.get("isMajor", False)),
        )

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to create content version", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to create content version")


def _mark_version_published(
    content_id: str, version_number: int, approver_id: str, approval_notes: Optional[str]
) -> Optional[Dict[str, Any]]:
    """Flag one version as published and clear the flag on every other version."""
    target: Optional[Dict[str, Any]] = None
    timestamp = now_iso()
    for version in list_versions(content_id):
        number = int(version["versionNumber"])
        if number == version_number:
            fields: Dict[str, Any] = {
                "isPublished": True,
                "publishedAt": timestamp,
                "approvedBy": approver_id,
                "approvedAt": timestamp,
                "changeType": "publish",
            }
            if approval_notes:
                fields["approvalNotes"] = approval_notes
        elif version.get("isPublished"):
            fields = {"isPublished": False}
        else:
            continue
        expression, names, values = build_update_expression(fields)
        response = tables.content_versions.update_item(
            Key={"contentId": content_id, "versionNumber": number},
            UpdateExpression=expression,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
        if number == version_number:
            target = from_dynamo(response["Attributes"])
    return target


def publish_content_version(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL mutation: publishContentVersion(contentId, versionNumber, approvalNotes)

    The version's snapshot is written back onto the live section or block.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        admin = require_admin(event)
        content_id = get_argument_required(event, "contentId")
        version_number = parse_int(get_argument_required(event, "versionNumber"), "versionNumber")

        item = tables.content_versions.get_item(
            Key={"contentId": content_id, "versionNumber": version_number}
        ).get("Item")
        if not item:
            raise AppError(ErrorCode.NOT_FOUND, "Version not found")
        version = from_dynamo(item)
        content_type = version["contentType"]
        record = get_content(content_type, content_id)
        if record is None:
            raise AppError(ErrorCode.NOT_FOUND, f"{content_type} {content_id} not found")

        published = _mark_version_published(content_id, version_number, admin["userId"], get_argument(event, "approvalNotes"))

        allowed = SECTION_SNAPSHOT_FIELDS if content_type == "section" else BLOCK_SNAPSHOT_FIELDS
        fields = {k: v for k, v in (version.get("contentData") or {}).items() if k in allowed}
        if content_type == "section":
            fields.update(
                {"status": "published", "publishedAt": now_iso(), "lastPublishedVersion": version_number}
            )
        else:
            fields["isActive"] = True
        update_record(content_type, record, fields)

        logger.info("Content version published", content_id=content_id, version=version_number)
        return published or version

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to publish content version", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to publish content version")
