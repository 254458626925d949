"""
Notification template administration (admin only).

Templates use ``{{variable}}`` placeholders. An active template whose
key matches a notification type overrides the built-in text for that type.
"""

from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Attr, Key

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.appsync_types import get_argument, get_input  # type: ignore[import-not-found]
    from utils.auth import require_admin  # type: ignore[import-not-found]
    from utils.clock import now_iso  # type: ignore[import-not-found]
    from utils.dynamodb import from_dynamo, query_all, scan_all, tables, to_dynamo  # type: ignore[import-not-found]
    from utils.errors import AppError, ErrorCode  # type: ignore[import-not-found]
    from utils.ids import ensure_template_id, new_id  # type: ignore[import-not-found]
    from utils.logging import get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.notifications import CATEGORIES  # type: ignore[import-not-found]
    from utils.responses import build_item_response, build_page  # type: ignore[import-not-found]
    from utils.templates import extract_template_variables, missing_variables, render_template  # type: ignore[import-not-found]
    from utils.validation import TEMPLATE_KEY_PATTERN, parse_int, validate_choice, validate_key  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.appsync_types import get_argument, get_input
    from ..utils.auth import require_admin
    from ..utils.clock import now_iso
    from ..utils.dynamodb import from_dynamo, query_all, scan_all, tables, to_dynamo
    from ..utils.errors import AppError, ErrorCode
    from ..utils.ids import ensure_template_id, new_id
    from ..utils.logging import get_correlation_id, get_logger
    from ..utils.notifications import CATEGORIES
    from ..utils.responses import build_item_response, build_page
    from ..utils.templates import extract_template_variables, missing_variables, render_template
    from ..utils.validation import TEMPLATE_KEY_PATTERN, parse_int, validate_choice, validate_key

TEMPLATE_TYPES = [
    "email_html",
    "email_text",
    "push_notification",
    "in_app_notification",
    "sms_message",
    "webhook_payload",
]

SORT_FIELDS = {
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "template_name": "templateName",
    "template_key": "templateKey",
}

MAX_PAGE_SIZE = 100


def _find_by_key(template_key: str) -> Optional[Dict[str, Any]]:
    items = query_all(
        tables.notification_templates,
        IndexName="templateKey-index",
        KeyConditionExpression=Key("templateKey").eq(template_key),
    )
    return from_dynamo(items[0]) if items else None


def _get_template(template_id: Optional[str], template_key: Optional[str]) -> Dict[str, Any]:
    if template_id:
        item = tables.notification_templates.get_item(Key={"templateId": ensure_template_id(template_id)}).get("Item")
        template = from_dynamo(item) if item else None
    elif template_key:
        template = _find_by_key(template_key)
    else:
        raise AppError(ErrorCode.INVALID_INPUT, "templateId or templateKey is required")
    if template is None:
        raise AppError(ErrorCode.NOT_FOUND, "Template not found")
    return template  # type: ignore[no-any-return]


def _detected_variables(content: Optional[str], subject: Optional[str]) -> List[str]:
    found = extract_template_variables(content)
    for name in extract_template_variables(subject):
        if name not in found:
            found.append(name)
    return found


def _summary(templates: List[Dict[str, Any]]) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "total": len(templates),
        "active": sum(1 for t in templates if t.get("isActive")),
        "inactive": sum(1 for t in templates if not t.get("isActive")),
        "byCategory": {},
        "byType": {},
        "byLanguage": {},
    }
    for template in templates:
        for bucket, field in (("byCategory", "category"), ("byType", "templateType"), ("byLanguage", "language")):
            value = template.get(field) or "unknown"
            summary[bucket][value] = summary[bucket].get(value, 0) + 1
    return summary


def list_notification_templates(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL query: listNotificationTemplates(category, templateType, language, isActive,
    search, page, limit, sortBy, sortOrder)

    Returns:
        { items, pagination, summary } where summary covers every stored template
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)

        page = max(parse_int(get_argument(event, "page"), "page", 1), 1)
        limit = min(max(parse_int(get_argument(event, "limit"), "limit", 20), 1), MAX_PAGE_SIZE)
        sort_by = validate_choice(get_argument(event, "sortBy") or "created_at", SORT_FIELDS, "sortBy")
        sort_order = validate_choice(get_argument(event, "sortOrder") or "desc", ["asc", "desc"], "sortOrder")

        templates = [from_dynamo(t) for t in scan_all(tables.notification_templates)]

        filtered = templates
        for arg, field in (("category", "category"), ("templateType", "templateType"), ("language", "language")):
            value = get_argument(event, arg)
            if value:
                filtered = [t for t in filtered if t.get(field) == value]
        is_active = get_argument(event, "isActive")
        if is_active is not None:
            filtered = [t for t in filtered if bool(t.get("isActive")) == bool(is_active)]
        search = str(get_argument(event, "search") or "").strip().lower()
        if search:
            filtered = [
                t
                for t in filtered
                if any(search in str(t.get(f) or "").lower() for f in ("templateName", "templateKey", "contentTemplate"))
            ]

        field = SORT_FIELDS[sort_by]
        filtered.sort(key=lambda t: str(t.get(field) or ""), reverse=sort_order == "desc")

        result = build_page(filtered, page, limit)
        result["summary"] = _summary(templates)
        return result

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to list notification templates", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to list notification templates")


def create_notification_template(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL mutation: createNotificationTemplate(input)

    Template keys are unique. When no variables are given, the placeholders found
    in the subject and content are recorded.

    Returns:
        { template, detectedVariables }
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        admin = require_admin(event)
        payload = get_input(event)

        template_key = validate_key(payload.get("templateKey"), TEMPLATE_KEY_PATTERN, "templateKey")
        template_name = str(payload.get("templateName") or "").strip()
        if not template_name or len(template_name) > 200:
            raise AppError(ErrorCode.INVALID_INPUT, "templateName must be 1-200 characters", {"field": "templateName"})
        content = payload.get("contentTemplate")
        if not content:
            raise AppError(ErrorCode.INVALID_INPUT, "contentTemplate is required", {"field": "contentTemplate"})
        language = str(payload.get("language") or "ko")
        if len(language) < 2 or len(language) > 10:
            raise AppError(ErrorCode.INVALID_INPUT, "language must be 2-10 characters", {"field": "language"})

        if _find_by_key(template_key):
            raise AppError(ErrorCode.ALREADY_EXISTS, f"Template key {template_key} already exists")

        detected = _detected_variables(content, payload.get("subjectTemplate"))
        variables = payload.get("variables") or {name: "string" for name in detected}

        timestamp = now_iso()
        template: Dict[str, Any] = {
            "templateId": new_id("TEMPLATE"),
            "templateKey": template_key,
            "templateName": template_name,
            "templateType": validate_choice(payload.get("templateType"), TEMPLATE_TYPES, "templateType"),
            "category": validate_choice(payload.get("category"), CATEGORIES, "category"),
            "contentTemplate": content,
            "variables": variables,
            "language": language,
            "isActive": bool(payload.get("isActive", True)),
            "createdBy": admin["userId"],
            "createdAt": timestamp,
            "updatedAt": timestamp,
        }
        if payload.get("subjectTemplate"):
            template["subjectTemplate"] = payload["subjectTemplate"]

        tables.notification_templates.put_item(Item=to_dynamo(template))
        logger.info("Notification template created", template_key=template_key)
        return {"template": build_item_response(template), "detectedVariables": detected}

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to create notification template", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to create notification template")


def update_notification_template(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL mutation: updateNotificationTemplate(templateId, input)

    The template key cannot change. Editing the text refreshes the variable
    list unless variables are given explicitly.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)
        existing = _get_template(get_argument(event, "templateId"), None)
        payload = get_input(event)

        if "templateKey" in payload and payload["templateKey"] != existing["templateKey"]:
            raise AppError(ErrorCode.INVALID_INPUT, "templateKey cannot be changed", {"field": "templateKey"})

        updated = dict(existing)
        if "templateName" in payload:
            name = str(payload["templateName"] or "").strip()
            if not name or len(name) > 200:
                raise AppError(ErrorCode.INVALID_INPUT, "templateName must be 1-200 characters", {"field": "templateName"})
            updated["templateName"] = name
        if "templateType" in payload:
            updated["templateType"] = validate_choice(payload["templateType"], TEMPLATE_TYPES, "templateType")
        if "category" in payload:
            updated["category"] = validate_choice(payload["category"], CATEGORIES, "category")
        if "language" in payload:
            updated["language"] = str(payload["language"])
        if "isActive" in payload:
            updated["isActive"] = bool(payload["isActive"])
        if payload.get("contentTemplate"):
            updated["contentTemplate"] = payload["contentTemplate"]
        if payload.get("subjectTemplate"):
            updated["subjectTemplate"] = payload["subjectTemplate"]

        if payload.get("variables"):
            updated["variables"] = payload["variables"]
        elif payload.get("contentTemplate") or payload.get("subjectTemplate"):
            previous = existing.get("variables") or {}
            updated["variables"] = {
                name: previous.get(name, "string")
                for name in _detected_variables(updated["contentTemplate"], updated.get("subjectTemplate"))
            }

        updated["updatedAt"] = now_iso()
        tables.notification_templates.put_item(Item=to_dynamo(updated))
        logger.info("Notification template updated", template_key=updated["templateKey"])
        return build_item_response(updated)

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to update notification template", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to update notification template")


def delete_notification_template(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL mutation: deleteNotificationTemplate(templateId | templateKey)

    Templates referenced by stored notifications cannot be deleted.
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)
        template = _get_template(get_argument(event, "templateId"), get_argument(event, "templateKey"))

        usage = scan_all(tables.notifications, FilterExpression=Attr("templateKey").eq(template["templateKey"]))
        if usage:
            raise AppError(
                ErrorCode.CONFLICT,
                "Cannot delete template: currently in use by notifications",
                {"usageCount": len(usage)},
            )

        tables.notification_templates.delete_item(Key={"templateId": template["templateId"]})
        logger.info("Notification template deleted", template_key=template["templateKey"])
        return {
            "templateId": template["templateId"],
            "templateKey": template["templateKey"],
            "templateName": template.get("templateName"),
        }

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to delete notification template", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to delete notification template")


def test_notification_template(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Render a template with sample data without sending anything.

    GraphQL query: testNotificationTemplate(templateKey, testData)
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        require_admin(event)
        template = _get_template(None, get_argument(event, "templateKey"))
        data = get_argument(event, "testData") or {}

        content = template.get("contentTemplate")
        subject = template.get("subjectTemplate")
        missing = missing_variables(content, data)
        for name in missing_variables(subject, data):
            if name not in missing:
                missing.append(name)

        return {
            "templateKey": template["templateKey"],
            "renderedSubject": render_template(subject, data) if subject else None,
            "renderedContent": render_template(content, data),
            "missingVariables": missing,
        }

    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to test notification template", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to test notification template")
