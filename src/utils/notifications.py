"""
Appointment notification pipeline.

Builds localized notification text from ``{{variable}}`` templates, writes
notification records, schedules reminders at fixed offsets before an
appointment, and applies per-category user preferences at delivery time.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import boto3
from boto3.dynamodb.conditions import Attr, Key

from .clock import local_datetime, now_iso, now_utc, parse_iso
from .dynamodb import from_dynamo, query_all, tables, to_dynamo
from .identity import get_display_name
from .ids import appointment_reference, new_id, strip_prefix
from .logging import get_logger
from .templates import render_template

logger = get_logger(__name__)

CHANNELS = ["in_app", "email", "push", "sms", "webhook"]
PRIORITIES = ["low", "normal", "high", "urgent"]
CATEGORIES = ["schedule", "content", "system", "security", "user", "admin", "marketing"]
DIGEST_FREQUENCIES = ["immediate", "daily", "weekly", "never"]
DEFAULT_LANGUAGE = "ko"
DEFAULT_PREFERENCE_TIMEZONE = "Asia/Seoul"

REMINDER_OFFSETS: Dict[str, Dict[str, Any]] = {
    "reminder24h": {
        "type": "appointment_reminder_24h",
        "offset": timedelta(hours=24),
        "channels": ["in_app", "email"],
        "priority": "high",
    },
    "reminder1h": {
        "type": "appointment_reminder_1h",
        "offset": timedelta(hours=1),
        "channels": ["in_app", "push"],
        "priority": "high",
    },
    "reminder15m": {
        "type": "appointment_reminder_15m",
        "offset": timedelta(minutes=15),
        "channels": ["in_app", "push", "sms"],
        "priority": "urgent",
    },
}

DEFAULT_REMINDER_CONFIG = {"reminder24h": True, "reminder1h": True, "reminder15m": False}

# Built-in text; active rows in notification_templates with the same key override these
BUILTIN_MESSAGES: Dict[str, Dict[str, Dict[str, str]]] = {
    "appointment_created": {
        "ko": {
            "title": "예약이 접수되었습니다",
            "message": "{{instructor_name}} 강사님과의 {{appointment_title}} 예약이 "
            "{{appointment_date}} {{appointment_time}}에 접수되었습니다. "
            "예약 번호: {{appointment_reference}}",
        },
        "en": {
            "title": "Booking received",
            "message": "Your {{appointment_title}} with {{instructor_name}} on "
            "{{appointment_date}} at {{appointment_time}} has been received. "
            "Reference: {{appointment_reference}}",
        },
    },
    "instructor_new_booking": {
        "ko": {
            "title": "새 예약 요청",
            "message": "{{user_name}}님이 {{appointment_date}} {{appointment_time}}에 "
            "{{appointment_title}}을(를) 예약했습니다.",
        },
        "en": {
            "title": "New booking request",
            "message": "{{user_name}} booked {{appointment_title}} on "
            "{{appointment_date}} at {{appointment_time}}.",
        },
    },
    "appointment_confirmed": {
        "ko": {
            "title": "예약이 확정되었습니다",
            "message": "{{appointment_date}} {{appointment_time}} {{appointment_title}} 예약이 확정되었습니다.",
        },
        "en": {
            "title": "Appointment confirmed",
            "message": "Your {{appointment_title}} on {{appointment_date}} at "
            "{{appointment_time}} is confirmed.",
        },
    },
    "appointment_reminder_24h": {
        "ko": {
            "title": "내일 예약 알림",
            "message": "내일 {{appointment_time}}에 {{appointment_title}} 예약이 있습니다.",
        },
        "en": {
            "title": "Appointment tomorrow",
            "message": "You have {{appointment_title}} tomorrow at {{appointment_time}}.",
        },
    },
    "appointment_reminder_1h": {
        "ko": {
            "title": "1시간 후 예약 알림",
            "message": "1시간 후 {{appointment_time}}에 {{appointment_title}} 예약이 시작됩니다.",
        },
        "en": {
            "title": "Appointment in 1 hour",
            "message": "{{appointment_title}} starts in 1 hour at {{appointment_time}}.",
        },
    },
    "appointment_reminder_15m": {
        "ko": {
            "title": "15분 후 예약 시작",
            "message": "{{appointment_title}} 예약이 15분 후 시작됩니다. {{meeting_details}}",
        },
        "en": {
            "title": "Starting in 15 minutes",
            "message": "{{appointment_title}} starts in 15 minutes. {{meeting_details}}",
        },
    },
    "appointment_cancelled": {
        "ko": {
            "title": "예약이 취소되었습니다",
            "message": "{{appointment_date}} {{appointment_time}} {{appointment_title}} 예약이 "
            "취소되었습니다. 사유: {{cancellation_reason}}",
        },
        "en": {
            "title": "Appointment cancelled",
            "message": "Your {{appointment_title}} on {{appointment_date}} at "
            "{{appointment_time}} was cancelled. Reason: {{cancellation_reason}}",
        },
    },
    "appointment_rescheduled": {
        "ko": {
            "title": "예약 일정이 변경되었습니다",
            "message": "{{appointment_title}} 예약이 {{appointment_date}} {{appointment_time}}(으)로 변경되었습니다.",
        },
        "en": {
            "title": "Appointment rescheduled",
            "message": "{{appointment_title}} has moved to {{appointment_date}} at {{appointment_time}}.",
        },
    },
    "appointment_completed": {
        "ko": {
            "title": "수업이 완료되었습니다",
            "message": "{{appointment_title}} 수업이 완료되었습니다. 이용해 주셔서 감사합니다.",
        },
        "en": {
            "title": "Session completed",
            "message": "Your {{appointment_title}} session is complete. Thank you!",
        },
    },
    "appointment_no_show": {
        "ko": {
            "title": "예약 불참 처리",
            "message": "{{appointment_date}} {{appointment_time}} {{appointment_title}} 예약이 불참으로 처리되었습니다.",
        },
        "en": {
            "title": "Marked as no-show",
            "message": "Your {{appointment_title}} on {{appointment_date}} at "
            "{{appointment_time}} was marked as a no-show.",
        },
    },
    "schedule_executed": {
        "ko": {
            "title": "예약 작업 완료",
            "message": "{{content_title}}에 대한 예약된 {{schedule_type}} 작업이 실행되었습니다.",
        },
        "en": {
            "title": "Scheduled action completed",
            "message": "The scheduled {{schedule_type}} of {{content_title}} has been executed.",
        },
    },
    "schedule_failed": {
        "ko": {
            "title": "예약 작업 실패",
            "message": "{{content_title}}에 대한 예약된 {{schedule_type}} 작업이 실패했습니다: {{error}}",
        },
        "en": {
            "title": "Scheduled action failed",
            "message": "The scheduled {{schedule_type}} of {{content_title}} failed: {{error}}",
        },
    },
}

_WEEKDAYS = {
    "ko": ["월요일", "화요일", "수요일", "목요일", "금요일", "토요일", "일요일"],
    "en": ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"],
}
_MONTHS_EN = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

# Module-level proxy that tests can monkeypatch
ses_client: object | None = None


def _get_ses_client() -> Any:
    if ses_client is not None:
        return ses_client
    return boto3.client("ses", endpoint_url=os.getenv("SES_ENDPOINT"))


# ----------------------------------------------------------------------
# Formatting
# ----------------------------------------------------------------------


def format_date(date_str: str, language: str = DEFAULT_LANGUAGE) -> str:
    """``2026년 10월 20일 화요일`` / ``Tuesday, October 20, 2026``."""
    day = datetime.fromisoformat(date_str).date()
    if language == "en":
        return f"{_WEEKDAYS['en'][day.weekday()]}, {_MONTHS_EN[day.month - 1]} {day.day}, {day.year}"
    return f"{day.year}년 {day.month}월 {day.day}일 {_WEEKDAYS['ko'][day.weekday()]}"


def format_time(time_str: str, language: str = DEFAULT_LANGUAGE) -> str:
    """``오후 2:00`` / ``2:00 PM``."""
    hours, minutes = (int(p) for p in time_str.split(":")[:2])
    hour12 = hours % 12 or 12
    if language == "en":
        return f"{hour12}:{minutes:02d} {'AM' if hours < 12 else 'PM'}"
    return f"{'오전' if hours < 12 else '오후'} {hour12}:{minutes:02d}"


def site_url() -> str:
    return os.getenv("SITE_URL", "https://aiedulog.com").rstrip("/")


def build_template_data(
    appointment: Dict[str, Any],
    user: Optional[Dict[str, Any]] = None,
    instructor: Optional[Dict[str, Any]] = None,
    appointment_type: Optional[Dict[str, Any]] = None,
    language: str = DEFAULT_LANGUAGE,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Variables available to every appointment notification template."""
    raw_id = strip_prefix(appointment["appointmentId"])
    base = site_url()
    meeting_type = appointment.get("meetingType")
    if meeting_type == "online":
        meeting_details = appointment.get("meetingLink") or ""
    else:
        meeting_details = appointment.get("meetingLocation") or ""

    date_text = format_date(appointment["appointmentDate"], language)
    time_text = format_time(appointment["startTime"], language)

    data: Dict[str, Any] = {
        "appointment_id": raw_id,
        "appointment_reference": appointment_reference(appointment["appointmentId"]),
        "appointment_title": appointment.get("title") or "",
        "appointment_date": date_text,
        "appointment_time": time_text,
        "appointment_end_time": format_time(appointment["endTime"], language),
        "duration_minutes": appointment.get("durationMinutes"),
        "appointment_type_name": (appointment_type or {}).get("typeName") or appointment.get("title"),
        "appointment_description": (appointment_type or {}).get("description") or "",
        "price": (appointment_type or {}).get("price"),
        "user_name": get_display_name(user),
        "user_email": (user or {}).get("email"),
        "instructor_name": get_display_name(instructor),
        "instructor_email": (instructor or {}).get("email"),
        "meeting_type": meeting_type,
        "meeting_location": appointment.get("meetingLocation"),
        "meeting_link": appointment.get("meetingLink"),
        "meeting_details": meeting_details,
        "status": appointment.get("status"),
        "notes": appointment.get("notes"),
        "cancellation_reason": appointment.get("cancellationReason") or "",
        "dashboard_url": f"{base}/dashboard",
        "appointment_url": f"{base}/dashboard/appointments/{raw_id}",
        "booking_url": f"{base}/scheduling",
        "calendar_link": f"{base}/api/appointments/{raw_id}/calendar",
        "site_name": "AIedulog",
        "support_email": os.getenv("SUPPORT_EMAIL", "support@aiedulog.com"),
        "formatted_datetime": f"{date_text} {time_text}",
        "day_of_week": date_text.split(", ")[0] if language == "en" else date_text.split(" ")[-1],
    }
    if extra:
        data.update(extra)
    return data


def _find_template(template_key: str, language: str) -> Optional[Dict[str, Any]]:
    items = query_all(
        tables.notification_templates,
        IndexName="templateKey-index",
        KeyConditionExpression=Key("templateKey").eq(template_key),
    )
    active = [i for i in items if i.get("isActive", True)]
    for item in active:
        if item.get("language", DEFAULT_LANGUAGE) == language:
            return item
    return None


def resolve_message(notification_type: str, language: str, data: Dict[str, Any]) -> Tuple[str, str]:
    """
    Render (title, message) for a notification type.

    A stored template for the key and language wins; otherwise built-in text in
    that language, then Korean, then the bare type name.
    """
    stored = _find_template(notification_type, language)
    if stored is not None:
        title = stored.get("subjectTemplate") or stored.get("templateName") or notification_type
        return render_template(title, data), render_template(stored.get("contentTemplate"), data)

    builtin = BUILTIN_MESSAGES.get(notification_type, {})
    text = builtin.get(language) or builtin.get(DEFAULT_LANGUAGE)
    if not text:
        return notification_type, notification_type
    return render_template(text["title"], data), render_template(text["message"], data)


# ----------------------------------------------------------------------
# Preferences
# ----------------------------------------------------------------------


def default_preference(user_id: str, category: str) -> Dict[str, Any]:
    return {
        "userId": user_id,
        "category": category,
        "channels": ["in_app"] if category == "marketing" else ["in_app", "email"],
        "quietHoursStart": None,
        "quietHoursEnd": None,
        "timezone": DEFAULT_PREFERENCE_TIMEZONE,
        "digestFrequency": "immediate",
        "maxNotificationsPerHour": 10,
        "isActive": category != "marketing",
    }


def get_preference(user_id: str, category: str) -> Dict[str, Any]:
    item = tables.notification_preferences.get_item(
        Key={"userId": user_id, "category": category}
    ).get("Item")
    return from_dynamo(item) if item else default_preference(user_id, category)


def _preference_zone(preference: Dict[str, Any]) -> ZoneInfo:
    name = preference.get("timezone") or DEFAULT_PREFERENCE_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.warning("Unknown preference timezone, using default", timezone=name, user_id=preference.get("userId"))
        return ZoneInfo(DEFAULT_PREFERENCE_TIMEZONE)


def in_quiet_hours(preference: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    start = preference.get("quietHoursStart")
    end = preference.get("quietHoursEnd")
    if not start or not end:
        return False
    local = (now or now_utc()).astimezone(_preference_zone(preference))
    current = local.strftime("%H:%M")
    if start <= end:
        return bool(start <= current < end)
    # Window wraps past midnight (e.g. 22:00-08:00)
    return bool(current >= start or current < end)


def decide_delivery(
    notification: Dict[str, Any], now: Optional[datetime] = None
) -> Tuple[str, List[str]]:
    """
    Apply the recipient's category preference.

    Returns:
        (deliveryStatus, channels): ``cancelled`` when the category is switched off,
        ``pending`` while a non-urgent notification falls in quiet hours,
        otherwise ``sent`` with requested channels narrowed to preferred ones
        (in-app is always kept).
    """
    preference = get_preference(notification["userId"], notification.get("category", "schedule"))
    if not preference.get("isActive", True):
        return "cancelled", []
    if notification.get("priority") != "urgent" and in_quiet_hours(preference, now):
        return "pending", []

    preferred = set(preference.get("channels") or ["in_app"])
    channels = [c for c in notification.get("channels", ["in_app"]) if c in preferred or c == "in_app"]
    if "in_app" not in channels:
        channels.insert(0, "in_app")
    return "sent", channels


def send_external(notification: Dict[str, Any], channels: List[str]) -> None:
    """Deliver out-of-app channels. Only email is wired (via SES, when a sender is configured)."""
    sender = os.getenv("NOTIFICATION_FROM_EMAIL")
    recipient = notification.get("recipientEmail")
    if "email" not in channels or not sender or not recipient:
        return
    try:
        _get_ses_client().send_email(
            Source=sender,
            Destination={"ToAddresses": [recipient]},
            Message={
                "Subject": {"Data": notification["title"], "Charset": "UTF-8"},
                "Body": {"Text": {"Data": notification["message"], "Charset": "UTF-8"}},
            },
        )
    except Exception as e:
        logger.error(
            "Email delivery failed",
            notification_id=notification.get("notificationId"),
            error=str(e),
        )


# ----------------------------------------------------------------------
# Records
# ----------------------------------------------------------------------


def create_notification(
    user_id: str,
    notification_type: str,
    title: str,
    message: str,
    *,
    category: str = "schedule",
    priority: str = "normal",
    channels: Optional[List[str]] = None,
    scheduled_for: Optional[datetime] = None,
    link: Optional[str] = None,
    appointment_id: Optional[str] = None,
    recipient_email: Optional[str] = None,
    template_key: Optional[str] = None,
    template_data: Optional[Dict[str, Any]] = None,
    action_data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Write a notification record.

    Immediate notifications are delivered on write; future ones stay
    ``pending`` for the dispatcher.
    """
    now = now_utc()
    when = (scheduled_for or now).astimezone(timezone.utc)
    item: Dict[str, Any] = {
        "userId": user_id,
        "notificationId": new_id("NOTIFICATION"),
        "type": notification_type,
        "category": category,
        "priority": priority,
        "title": title,
        "message": message,
        "channels": channels or ["in_app"],
        "scheduledFor": when.isoformat(),
        "deliveryStatus": "pending",
        "isRead": False,
        "createdAt": now.isoformat(),
    }
    optional = {
        "link": link,
        "appointmentId": appointment_id,
        "recipientEmail": recipient_email,
        "templateKey": template_key,
        "templateData": template_data,
        "actionData": action_data,
    }
    item.update({k: v for k, v in optional.items() if v is not None})

    channels_sent: List[str] = []
    if when <= now:
        status, channels_sent = decide_delivery(item, now)
        item["deliveryStatus"] = status
        if status == "sent":
            item["sentAt"] = now.isoformat()
            item["deliveredChannels"] = channels_sent

    tables.notifications.put_item(Item=to_dynamo(item))
    if item["deliveryStatus"] == "sent":
        send_external(item, channels_sent)
    return item


def notify_participant(
    notification_type: str,
    appointment: Dict[str, Any],
    recipient: Dict[str, Any],
    *,
    user: Optional[Dict[str, Any]] = None,
    instructor: Optional[Dict[str, Any]] = None,
    appointment_type: Optional[Dict[str, Any]] = None,
    priority: str = "normal",
    channels: Optional[List[str]] = None,
    scheduled_for: Optional[datetime] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Render a lifecycle message in the recipient's language and store it."""
    language = recipient.get("language") or DEFAULT_LANGUAGE
    data = build_template_data(appointment, user, instructor, appointment_type, language, extra)
    title, message = resolve_message(notification_type, language, data)
    return create_notification(
        recipient["userId"],
        notification_type,
        title,
        message,
        priority=priority,
        channels=channels or ["in_app", "email"],
        scheduled_for=scheduled_for,
        link=data["appointment_url"],
        appointment_id=appointment["appointmentId"],
        recipient_email=recipient.get("email"),
        template_key=notification_type,
        template_data=data,
        action_data={"appointmentId": appointment["appointmentId"]},
    )


def _notify_each(
    notification_type: str,
    appointment: Dict[str, Any],
    recipients: List[Dict[str, Any]],
    **kwargs: Any,
) -> List[Dict[str, Any]]:
    """notify_participant per recipient; a failure for one recipient is logged and the rest still get theirs."""
    created: List[Dict[str, Any]] = []
    for recipient in recipients:
        try:
            created.append(notify_participant(notification_type, appointment, recipient, **kwargs))
        except Exception as e:
            logger.error(
                "Failed to notify participant",
                notification_type=notification_type,
                appointment_id=appointment.get("appointmentId"),
                user_id=recipient.get("userId"),
                error=str(e),
            )
    return created


def send_booking_confirmation(
    appointment: Dict[str, Any],
    user: Dict[str, Any],
    instructor: Dict[str, Any],
    appointment_type: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """Booking receipt to the user and a new-booking alert to the instructor."""
    kwargs = {"user": user, "instructor": instructor, "appointment_type": appointment_type, "priority": "high"}
    return _notify_each("appointment_created", appointment, [user], **kwargs) + _notify_each(
        "instructor_new_booking", appointment, [instructor], **kwargs
    )


def send_lifecycle_notification(
    notification_type: str,
    appointment: Dict[str, Any],
    user: Dict[str, Any],
    instructor: Dict[str, Any],
    extra: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """Same lifecycle message to both participants."""
    return _notify_each(
        notification_type, appointment, [user, instructor], user=user, instructor=instructor, extra=extra
    )


def schedule_reminders(
    appointment: Dict[str, Any],
    user: Dict[str, Any],
    instructor: Dict[str, Any],
    config: Optional[Dict[str, bool]] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Queue reminders before the appointment start for both participants.

    Offsets whose reminder time has already passed are skipped.
    """
    config = {**DEFAULT_REMINDER_CONFIG, **(config or {})}
    now = now or now_utc()
    start = local_datetime(appointment["appointmentDate"], appointment["startTime"])
    created: List[Dict[str, Any]] = []

    for key, offset in REMINDER_OFFSETS.items():
        if not config.get(key):
            continue
        remind_at = start - offset["offset"]
        if remind_at <= now:
            continue
        created.extend(
            _notify_each(
                offset["type"],
                appointment,
                [user, instructor],
                user=user,
                instructor=instructor,
                priority=offset["priority"],
                channels=list(offset["channels"]),
                scheduled_for=remind_at,
            )
        )
    return created


def cancel_pending_notifications(appointment_id: str) -> int:
    """Cancel queued notifications for an appointment. Returns how many were cancelled."""
    pending = query_all(
        tables.notifications,
        IndexName="deliveryStatus-scheduledFor-index",
        KeyConditionExpression=Key("deliveryStatus").eq("pending"),
        FilterExpression=Attr("appointmentId").eq(appointment_id),
    )
    for item in pending:
        tables.notifications.update_item(
            Key={"userId": item["userId"], "notificationId": item["notificationId"]},
            UpdateExpression="SET #status = :cancelled, #updated = :now",
            ExpressionAttributeNames={"#status": "deliveryStatus", "#updated": "updatedAt"},
            ExpressionAttributeValues={":cancelled": "cancelled", ":now": now_iso()},
        )
    return len(pending)


def due_notifications(now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Pending notifications whose scheduled time has been reached."""
    cutoff = (now or now_utc()).isoformat()
    return query_all(
        tables.notifications,
        IndexName="deliveryStatus-scheduledFor-index",
        KeyConditionExpression=Key("deliveryStatus").eq("pending") & Key("scheduledFor").lte(cutoff),
    )


def is_sent_since(notification: Dict[str, Any], since: datetime) -> bool:
    sent_at = parse_iso(notification.get("sentAt"))
    return sent_at is not None and sent_at >= since
