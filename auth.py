"""Shared-secret guards for the HTTP layer."""
import hmac
from typing import Optional

API_KEY_HEADER = "X-API-Key"


def validate_api_key(provided: Optional[str], expected: Optional[str]) -> bool:
    """True when the X-API-Key value matches the configured key."""
    if not expected:
        print("[Auth] TENSAI_KEY environment variable not set")
        return False
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def validate_cron_secret(authorization: Optional[str], secret: Optional[str]) -> bool:
    """True when the Authorization header is `Bearer <CRON_SECRET>`."""
    if not secret:
        print("[Auth] CRON_SECRET environment variable not set")
        return False
    if not authorization:
        return False
    return hmac.compare_digest(authorization.encode("utf-8"), f"Bearer {secret}".encode("utf-8"))
