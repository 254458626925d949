"""
GraphQL response builders for Lambda resolvers.

Provides consistent response structures and entity builders for
AppSync GraphQL resolvers.
"""

from typing import Any, Dict, List, Optional, TypedDict, cast

from .dynamodb import from_dynamo
from .identity import get_display_name
from .ids import appointment_reference


class UserProfileResponse(TypedDict, total=False):
    """GraphQL UserProfile response type."""

    userId: str
    email: Optional[str]
    nickname: Optional[str]
    fullName: Optional[str]
    displayName: str
    avatarUrl: Optional[str]
    role: str
    status: str
    school: Optional[str]
    subject: Optional[str]
    bio: Optional[str]
    createdAt: str
    updatedAt: str


class BookingSessionResponse(TypedDict, total=False):
    """GraphQL BookingSession response type."""

    sessionId: str
    userId: Optional[str]
    sessionToken: str
    currentStep: str
    data: Dict[str, Any]
    expiresAt: str
    createdAt: str
    updatedAt: str


class AppointmentResponse(TypedDict, total=False):
    """GraphQL Appointment response type."""

    appointmentId: str
    reference: str
    userId: str
    instructorId: str
    appointmentTypeId: str
    title: str
    appointmentDate: str
    startTime: str
    endTime: str
    durationMinutes: int
    meetingType: str
    meetingLocation: Optional[str]
    meetingLink: Optional[str]
    status: str
    notes: Optional[str]
    cancellationReason: Optional[str]
    cancelledBy: Optional[str]
    confirmedAt: Optional[str]
    createdAt: str
    updatedAt: str


class NotificationResponse(TypedDict, total=False):
    """GraphQL Notification response type."""

    notificationId: str
    type: str
    category: str
    priority: str
    title: str
    message: str
    link: Optional[str]
    isRead: bool
    readAt: Optional[str]
    sentAt: Optional[str]
    actionData: Optional[Dict[str, Any]]
    createdAt: str


def build_user_profile_response(item: Dict[str, Any]) -> UserProfileResponse:
    """Build a UserProfile response from a DynamoDB item (auth ids are never exposed)."""
    return UserProfileResponse(
        userId=cast(str, item.get("userId", "")),
        email=item.get("email"),
        nickname=item.get("nickname"),
        fullName=item.get("fullName"),
        displayName=get_display_name(item),
        avatarUrl=item.get("avatarUrl"),
        role=cast(str, item.get("role", "member")),
        status=cast(str, item.get("status", "active")),
        school=item.get("school"),
        subject=item.get("subject"),
        bio=item.get("bio"),
        createdAt=cast(str, item.get("createdAt", "")),
        updatedAt=cast(str, item.get("updatedAt", "")),
    )


def build_booking_session_response(item: Dict[str, Any]) -> BookingSessionResponse:
    """Build a BookingSession response from a DynamoDB item."""
    data = from_dynamo(item.get("data") or {})
    data.setdefault("completed_steps", [])
    return BookingSessionResponse(
        sessionId=cast(str, item.get("sessionId", "")),
        userId=item.get("userId"),
        sessionToken=cast(str, item.get("sessionToken", "")),
        currentStep=cast(str, item.get("currentStep", "")),
        data=data,
        expiresAt=cast(str, item.get("expiresAt", "")),
        createdAt=cast(str, item.get("createdAt", "")),
        updatedAt=cast(str, item.get("updatedAt", "")),
    )


def build_appointment_response(item: Dict[str, Any]) -> AppointmentResponse:
    """Build an Appointment response from a DynamoDB item."""
    duration = item.get("durationMinutes")
    try:
        duration = int(duration) if duration is not None else 0
    except (ValueError, TypeError):
        duration = 0

    appointment_id = cast(str, item.get("appointmentId", ""))
    return AppointmentResponse(
        appointmentId=appointment_id,
        reference=appointment_reference(appointment_id) if appointment_id else "",
        userId=cast(str, item.get("userId", "")),
        instructorId=cast(str, item.get("instructorId", "")),
        appointmentTypeId=cast(str, item.get("appointmentTypeId", "")),
        title=cast(str, item.get("title", "")),
        appointmentDate=cast(str, item.get("appointmentDate", "")),
        startTime=cast(str, item.get("startTime", "")),
        endTime=cast(str, item.get("endTime", "")),
        durationMinutes=duration,
        meetingType=cast(str, item.get("meetingType", "")),
        meetingLocation=item.get("meetingLocation"),
        meetingLink=item.get("meetingLink"),
        status=cast(str, item.get("status", "")),
        notes=item.get("notes"),
        cancellationReason=item.get("cancellationReason"),
        cancelledBy=item.get("cancelledBy"),
        confirmedAt=item.get("confirmedAt"),
        createdAt=cast(str, item.get("createdAt", "")),
        updatedAt=cast(str, item.get("updatedAt", "")),
    )


def build_notification_response(item: Dict[str, Any]) -> NotificationResponse:
    """Build a Notification response from a DynamoDB item."""
    return NotificationResponse(
        notificationId=cast(str, item.get("notificationId", "")),
        type=cast(str, item.get("type", "")),
        category=cast(str, item.get("category", "")),
        priority=cast(str, item.get("priority", "normal")),
        title=cast(str, item.get("title", "")),
        message=cast(str, item.get("message", "")),
        link=item.get("link"),
        isRead=bool(item.get("isRead", False)),
        readAt=item.get("readAt"),
        sentAt=item.get("sentAt"),
        actionData=from_dynamo(item.get("actionData")),
        createdAt=cast(str, item.get("createdAt", "")),
    )


def build_item_response(item: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Generic builder for entities whose stored shape is the API shape (CMS, templates)."""
    return cast(Dict[str, Any], from_dynamo(dict(item or {})))


def build_page(items: List[Any], page: int, limit: int) -> Dict[str, Any]:
    """Slice ``items`` into a 1-based page with pagination metadata."""
    total = len(items)
    start = (page - 1) * limit
    return {
        "items": items[start : start + limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": (total + limit - 1) // limit if limit else 0,
        },
    }
