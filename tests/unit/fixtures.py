"""
Test data builders for Lambda function tests.

Provides factory functions for creating test data with sensible defaults
and customization options. Use these to create test entities without
repeating boilerplate across test files.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from src.utils.appsync_types import AppSyncEvent, AppSyncIdentity
from src.utils.clock import local_today


def make_user_id(suffix: Optional[str] = None) -> str:
    """Generate a user ID in format 'USER#...'."""
    return f"USER#{suffix or uuid4().hex[:12]}"


def future_date(days: int = 3) -> str:
    """A date ``days`` ahead of today in the platform timezone."""
    return (local_today() + timedelta(days=days)).isoformat()


def iso_in(**delta: float) -> str:
    """ISO UTC timestamp offset from now (e.g. ``iso_in(hours=-1)``)."""
    return (datetime.now(timezone.utc) + timedelta(**delta)).isoformat()


def make_profile(
    suffix: Optional[str] = None,
    role: str = "member",
    status: str = "active",
    **overrides: Any,
) -> Dict[str, Any]:
    """Build a user profile item whose authUserId and email are derived from ``suffix``."""
    suffix = suffix or uuid4().hex[:8]
    timestamp = datetime.now(timezone.utc).isoformat()
    profile: Dict[str, Any] = {
        "userId": make_user_id(suffix),
        "authUserId": f"auth-{suffix}",
        "email": f"{suffix}@example.com",
        "role": role,
        "status": status,
        "createdAt": timestamp,
        "updatedAt": timestamp,
    }
    profile.update(overrides)
    return profile


def make_event(
    arguments: Optional[Dict[str, Any]] = None,
    profile: Optional[Dict[str, Any]] = None,
    groups: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Build an AppSync event.

    With a profile the caller is signed in as that user (sub=authUserId,
    email claim); without one the caller is anonymous (identity None).
    """
    identity: Optional[AppSyncIdentity] = None
    if profile is not None:
        claims: Dict[str, Any] = {"email": profile.get("email")}
        if groups:
            claims["cognito:groups"] = groups
        identity = AppSyncIdentity(sub=profile["authUserId"], username=profile["authUserId"], claims=claims)
    event = AppSyncEvent(
        arguments=arguments or {},
        identity=identity,
        requestContext={"requestId": "test-correlation-id"},
        info={"fieldName": "testField", "parentTypeName": "Query"},
    )
    return dict(event)


def make_appointment_type(
    instructor_id: str, suffix: Optional[str] = None, **overrides: Any
) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "appointmentTypeId": f"APPTYPE#{suffix or uuid4().hex[:8]}",
        "instructorId": instructor_id,
        "typeName": "AI Lesson Consultation",
        "description": "One-on-one consultation",
        "durationMinutes": 60,
        "price": 50000,
        "meetingType": "online",
        "meetingLink": "https://meet.example.com/room",
        "bookingAdvanceDays": 30,
        "isActive": True,
        "createdAt": datetime.now(timezone.utc).isoformat(),
    }
    item.update(overrides)
    return item


def make_appointment(
    user_id: str,
    instructor_id: str,
    appointment_date: Optional[str] = None,
    start_time: str = "10:00",
    end_time: str = "11:00",
    status: str = "pending",
    **overrides: Any,
) -> Dict[str, Any]:
    timestamp = datetime.now(timezone.utc).isoformat()
    item: Dict[str, Any] = {
        "appointmentId": f"APPOINTMENT#{uuid4()}",
        "userId": user_id,
        "instructorId": instructor_id,
        "appointmentTypeId": "APPTYPE#consult",
        "title": "AI Lesson Consultation",
        "appointmentDate": appointment_date or future_date(),
        "startTime": start_time,
        "endTime": end_time,
        "durationMinutes": 60,
        "meetingType": "online",
        "meetingLink": "https://meet.example.com/room",
        "status": status,
        "createdAt": timestamp,
        "updatedAt": timestamp,
    }
    item.update(overrides)
    return item


def make_availability_rules(instructor_id: str, start: str = "09:00", end: str = "18:00") -> List[Dict[str, Any]]:
    """Same working window on every day of the week."""
    return [
        {
            "instructorId": instructor_id,
            "availabilityId": f"AVAILABILITY#day-{day}",
            "dayOfWeek": day,
            "startTime": start,
            "endTime": end,
            "bufferMinutes": 0,
            "isAvailable": True,
        }
        for day in range(7)
    ]


def make_notification(user_id: str, **overrides: Any) -> Dict[str, Any]:
    timestamp = datetime.now(timezone.utc).isoformat()
    item: Dict[str, Any] = {
        "userId": user_id,
        "notificationId": f"NOTIFICATION#{uuid4()}",
        "type": "appointment_confirmed",
        "category": "schedule",
        "priority": "normal",
        "title": "Appointment confirmed",
        "message": "Your appointment is confirmed.",
        "channels": ["in_app"],
        "scheduledFor": timestamp,
        "deliveryStatus": "sent",
        "sentAt": timestamp,
        "isRead": False,
        "createdAt": timestamp,
    }
    item.update(overrides)
    return item
