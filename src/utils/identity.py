"""
Stable identity resolution.

Maps an auth-provider user id (Cognito ``sub``) plus email onto a durable
``user_profiles`` record. Resolution is email-first: when a user signs in
again with a regenerated provider id, the existing profile is re-pointed
instead of a duplicate being created.

Lookups are cached per Lambda container in a small TTL cache.
"""

import time
from datetime import datetime, time as dt_time
from typing import Any, Dict, List, Optional, TypedDict

from boto3.dynamodb.conditions import Attr, Key

from .clock import app_timezone, local_today, now_iso, parse_iso
from .dynamodb import build_update_expression, from_dynamo, scan_all, tables
from .errors import AppError, ErrorCode
from .ids import new_id
from .logging import get_logger

logger = get_logger(__name__)

USER_STATS_TTL = 60
SEARCH_TTL = 60


class IdentityServiceError(AppError):
    """Base error for identity resolution failures."""


class IdentityNotFoundError(IdentityServiceError):
    def __init__(self, identifier: str) -> None:
        super().__init__(
            ErrorCode.IDENTITY_NOT_FOUND,
            f"Identity not found for {identifier}",
            {"identifier": identifier},
        )


class IdentityResolutionError(IdentityServiceError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(ErrorCode.IDENTITY_RESOLUTION_ERROR, message, details)


class ServiceConfig(TypedDict, total=False):
    """Runtime configuration for StableIdentityService."""

    cacheEnabled: bool
    cacheTtl: int  # seconds
    maxRetries: int
    retryDelay: float  # seconds, multiplied by the attempt number
    enableLogging: bool


class IdentityData(TypedDict):
    """Resolved identity: the stable user id plus the profile it came from."""

    userId: str
    profile: Dict[str, Any]


class UserStats(TypedDict):
    totalUsers: int
    newUsersToday: int
    verifiedTeachers: int
    activeUsers: int


DEFAULT_CONFIG: ServiceConfig = {
    "cacheEnabled": True,
    "cacheTtl": 300,
    "maxRetries": 3,
    "retryDelay": 1.0,
    "enableLogging": True,
}


def get_display_name(profile: Optional[Dict[str, Any]]) -> str:
    """Nickname, then full name, then the email local part, else 'Anonymous'."""
    if not profile:
        return "Anonymous"
    if profile.get("nickname"):
        return str(profile["nickname"])
    if profile.get("fullName"):
        return str(profile["fullName"])
    email = profile.get("email")
    if email:
        return str(email).split("@")[0]
    return "Anonymous"


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return email.strip().lower() or None


class StableIdentityService:
    """Cached identity lookups over the user_profiles table."""

    def __init__(self, config: Optional[ServiceConfig] = None) -> None:
        self.config: ServiceConfig = {**DEFAULT_CONFIG, **(config or {})}  # type: ignore[typeddict-item]
        self._cache: Dict[str, Dict[str, Any]] = {}

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _cache_get(self, key: str) -> Any:
        if not self.config["cacheEnabled"]:
            return None
        entry = self._cache.get(key)
        if entry is None:
            return None
        if time.time() - entry["timestamp"] > entry["ttl"]:
            del self._cache[key]
            return None
        return entry["data"]

    def _cache_set(self, key: str, data: Any, ttl: Optional[int] = None) -> None:
        if not self.config["cacheEnabled"]:
            return
        self._cache[key] = {
            "data": data,
            "timestamp": time.time(),
            "ttl": ttl if ttl is not None else self.config["cacheTtl"],
        }

    def clear_cache(self) -> None:
        self._cache.clear()

    def clear_user_cache(self, user_id: str) -> None:
        """Drop every cache entry that mentions the given user id in its key or holds that user's identity."""
        stale = [
            key
            for key, entry in self._cache.items()
            if user_id in key or (isinstance(entry["data"], dict) and entry["data"].get("userId") == user_id)
        ]
        for key in stale:
            del self._cache[key]

    def get_cache_stats(self) -> Dict[str, Any]:
        return {"size": len(self._cache), "keys": list(self._cache.keys())}

    def update_config(self, **changes: Any) -> None:
        self.config.update(changes)  # type: ignore[typeddict-item]

    def get_config(self) -> ServiceConfig:
        return dict(self.config)  # type: ignore[return-value]

    def _log(self, message: str, **kwargs: Any) -> None:
        if self.config["enableLogging"]:
            logger.info(message, **kwargs)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        response = tables.user_profiles.query(
            IndexName="email-index",
            KeyConditionExpression=Key("email").eq(email),
            Limit=1,
        )
        items = response.get("Items", [])
        return items[0] if items else None

    def _find_by_auth_user_id(self, auth_user_id: str) -> Optional[Dict[str, Any]]:
        response = tables.user_profiles.query(
            IndexName="authUserId-index",
            KeyConditionExpression=Key("authUserId").eq(auth_user_id),
            Limit=1,
        )
        items = response.get("Items", [])
        return items[0] if items else None

    def _ensure_user_identity(self, auth_user_id: str, email: Optional[str]) -> Dict[str, Any]:
        """Find or create the profile for an auth user, email first."""
        profile = self._find_by_email(email) if email else None

        if profile is not None:
            if profile.get("authUserId") != auth_user_id:
                self._log(
                    "Re-linking profile to new auth user id",
                    user_id=profile["userId"],
                    auth_user_id=auth_user_id,
                )
                fields: Dict[str, Any] = {"authUserId": auth_user_id, "updatedAt": now_iso()}
                if profile.get("status") == "pending":
                    fields["status"] = "active"
                expression, names, values = build_update_expression(fields)
                response = tables.user_profiles.update_item(
                    Key={"userId": profile["userId"]},
                    UpdateExpression=expression,
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=values,
                    ReturnValues="ALL_NEW",
                )
                profile = response["Attributes"]
            return profile

        profile = self._find_by_auth_user_id(auth_user_id)
        if profile is not None:
            return profile

        timestamp = now_iso()
        profile = {
            "userId": new_id("USER"),
            "authUserId": auth_user_id,
            "role": "member",
            "status": "active",
            "createdAt": timestamp,
            "updatedAt": timestamp,
        }
        if email:
            profile["email"] = email
        tables.user_profiles.put_item(Item=profile)
        self._log("Created user profile", user_id=profile["userId"], auth_user_id=auth_user_id)
        return profile

    def _fallback_resolve(self, auth_user_id: str, email: Optional[str]) -> Dict[str, Any]:
        last_error: Optional[Exception] = None
        attempts = max(int(self.config["maxRetries"]), 1)
        for attempt in range(1, attempts + 1):
            try:
                profile = self._find_by_auth_user_id(auth_user_id)
                if profile is None and email:
                    profile = self._find_by_email(email)
                if profile is not None:
                    return profile
            except Exception as e:
                last_error = e
                logger.warning(
                    "Identity fallback lookup failed", attempt=attempt, error=str(e)
                )
            if attempt < attempts:
                time.sleep(float(self.config["retryDelay"]) * attempt)

        raise IdentityResolutionError(
            "Failed to resolve identity",
            {
                "authUserId": auth_user_id,
                "cause": str(last_error) if last_error else "not found",
            },
        )

    def resolve_user_identity(self, auth_user_id: str, email: Optional[str] = None) -> IdentityData:
        """
        Resolve the stable identity for an authenticated user.

        Args:
            auth_user_id: Auth provider user id (Cognito sub)
            email: Email claim, used first for matching

        Returns:
            IdentityData with the stable userId and full profile

        Raises:
            IdentityResolutionError: If neither the primary nor the fallback path succeeds
        """
        email = normalize_email(email)
        cache_key = f"identity:{auth_user_id}:{email}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached  # type: ignore[no-any-return]

        try:
            profile = self._ensure_user_identity(auth_user_id, email)
        except Exception as e:
            logger.warning("Primary identity resolution failed, using fallback", error=str(e))
            profile = self._fallback_resolve(auth_user_id, email)

        identity = IdentityData(userId=profile["userId"], profile=from_dynamo(profile))
        self._cache_set(cache_key, identity)
        self._cache_set(f"identity_by_id:{identity['userId']}", identity)
        return identity

    def get_identity_by_id(self, user_id: str) -> Optional[IdentityData]:
        cache_key = f"identity_by_id:{user_id}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached  # type: ignore[no-any-return]

        item = tables.user_profiles.get_item(Key={"userId": user_id}).get("Item")
        if not item:
            return None
        identity = IdentityData(userId=user_id, profile=from_dynamo(item))
        self._cache_set(cache_key, identity)
        return identity

    def require_identity_by_id(self, user_id: str) -> IdentityData:
        identity = self.get_identity_by_id(user_id)
        if identity is None:
            raise IdentityNotFoundError(user_id)
        return identity

    def get_identity_by_email(self, email: str) -> Optional[IdentityData]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        item = self._find_by_email(normalized)
        if not item:
            return None
        return IdentityData(userId=item["userId"], profile=from_dynamo(item))

    def create_pending_identity(
        self, email: str, full_name: Optional[str] = None, phone: Optional[str] = None
    ) -> IdentityData:
        """Create a placeholder profile for a guest, claimed on first sign-in by email."""
        timestamp = now_iso()
        profile: Dict[str, Any] = {
            "userId": new_id("USER"),
            "email": normalize_email(email),
            "role": "member",
            "status": "pending",
            "createdAt": timestamp,
            "updatedAt": timestamp,
        }
        if full_name:
            profile["fullName"] = full_name
        if phone:
            profile["phone"] = phone
        tables.user_profiles.put_item(Item=profile)
        self._log("Created pending profile for guest booking", user_id=profile["userId"])
        return IdentityData(userId=profile["userId"], profile=profile)

    def get_identity_id(self, auth_user_id: str, email: Optional[str] = None) -> Optional[str]:
        """Stable user id for an auth user, or None if it cannot be resolved."""
        try:
            return self.resolve_user_identity(auth_user_id, email)["userId"]
        except AppError as e:
            logger.warning("Could not resolve identity id", error=e.message)
            return None

    @staticmethod
    def is_message_owner(sender_id: Optional[str], identity_id: Optional[str]) -> bool:
        return bool(sender_id) and sender_id == identity_id

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def get_user_stats(self) -> UserStats:
        """Dashboard counters. Storage failures yield zeros rather than an error."""
        cached = self._cache_get("user_stats")
        if cached is not None:
            return cached  # type: ignore[no-any-return]

        try:
            profiles = scan_all(tables.user_profiles)
        except Exception as e:
            logger.error("Failed to load user stats", error=str(e))
            return UserStats(totalUsers=0, newUsersToday=0, verifiedTeachers=0, activeUsers=0)

        midnight = datetime.combine(local_today(), dt_time.min, tzinfo=app_timezone())
        active = [p for p in profiles if p.get("status") == "active"]
        new_today = 0
        for profile in active:
            created = profile.get("createdAt")
            if created and parse_iso(str(created)) >= midnight:  # type: ignore[operator]
                new_today += 1

        stats = UserStats(
            totalUsers=len(active),
            newUsersToday=new_today,
            verifiedTeachers=sum(1 for p in profiles if p.get("role") == "verified"),
            activeUsers=len(active),
        )
        self._cache_set("user_stats", stats, USER_STATS_TTL)
        return stats

    def search_users(
        self, query: str, limit: int = 10, exclude_user_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Case-insensitive substring search over nickname, email and full name."""
        term = (query or "").strip().lower()
        if not term:
            return []

        cache_key = f"search:{term}:{limit}:{exclude_user_id or ''}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached  # type: ignore[no-any-return]

        try:
            profiles = scan_all(tables.user_profiles, FilterExpression=Attr("status").ne("suspended"))
        except Exception as e:
            logger.error("User search failed", error=str(e))
            return []

        matches = []
        for profile in profiles:
            if exclude_user_id and profile.get("userId") == exclude_user_id:
                continue
            haystack = [
                str(profile.get(field) or "").lower() for field in ("nickname", "email", "fullName")
            ]
            if any(term in value for value in haystack):
                matches.append(from_dynamo(profile))

        matches.sort(key=lambda p: get_display_name(p).lower())
        results = matches[:limit]
        self._cache_set(cache_key, results, SEARCH_TTL)
        return results


_service: Optional[StableIdentityService] = None


def get_identity_service() -> StableIdentityService:
    """Process-wide identity service (one cache per Lambda container)."""
    global _service
    if _service is None:
        _service = StableIdentityService()
    return _service


def reset_identity_service() -> None:
    global _service
    _service = None
