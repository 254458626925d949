"""
Booking session tokens.

Format: ``<prefix>_<base64url(32 random bytes)>_<base36 creation time in ms>``.
The trailing timestamp lets expired tokens be rejected before any lookup.
"""

import base64
import hmac
import secrets
import time
from typing import Optional, TypedDict

BOOKING_TOKEN_PREFIX = "booking"
TOKEN_MAX_AGE_HOURS = 2
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class TokenCheck(TypedDict):
    valid: bool
    expired: bool


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_secure_token(
    prefix: str = BOOKING_TOKEN_PREFIX, now_ms: Optional[int] = None
) -> str:
    random_part = base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")
    timestamp = to_base36(now_ms if now_ms is not None else int(time.time() * 1000))
    return f"{prefix}_{random_part}_{timestamp}"


def validate_token_format(
    token: Optional[str],
    prefix: str = BOOKING_TOKEN_PREFIX,
    max_age_hours: float = TOKEN_MAX_AGE_HOURS,
    now_ms: Optional[int] = None,
) -> TokenCheck:
    """
    Check prefix, shape and age of a token without touching storage.

    Returns:
        ``{"valid": ..., "expired": ...}``; expired tokens are reported as invalid too.
    """
    if not token or not token.startswith(f"{prefix}_") or len(token) < 20:
        return TokenCheck(valid=False, expired=False)

    timestamp_part = token.rsplit("_", 1)[-1]
    try:
        created_ms = int(timestamp_part, 36)
    except ValueError:
        return TokenCheck(valid=False, expired=False)

    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    if now_ms - created_ms > max_age_hours * 3600 * 1000:
        return TokenCheck(valid=False, expired=True)
    return TokenCheck(valid=True, expired=False)


def compare_tokens(expected: Optional[str], provided: Optional[str]) -> bool:
    """Constant-time token comparison."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))
