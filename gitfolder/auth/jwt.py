"""JWT creation and validation for API sessions and OAuth state."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt

from gitfolder.config import get_settings


def _encode(claims: dict[str, Any], expires_in: timedelta) -> str:
    settings = get_settings()
    to_encode = {**claims, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Create a short-lived access JWT. Subject is the user id."""
    settings = get_settings()
    return _encode(
        {"sub": str(user_id), "type": "access"},
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(user_id: int) -> str:
    """Create a refresh JWT for obtaining new access tokens."""
    settings = get_settings()
    return _encode(
        {"sub": str(user_id), "type": "refresh"},
        timedelta(days=settings.refresh_token_expire_days),
    )


def create_state_token(provider: str) -> str:
    """Signed OAuth state: binds the callback to the provider and expires quickly."""
    settings = get_settings()
    return _encode(
        {"sub": provider, "type": "oauth_state", "nonce": secrets.token_urlsafe(16)},
        timedelta(minutes=settings.oauth_state_expire_minutes),
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """Decode and validate a JWT; return payload or None."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def _subject(token: str, token_type: str) -> Optional[str]:
    payload = decode_token(token)
    if not payload or payload.get("type") != token_type:
        return None
    return payload.get("sub")


def _user_id(token: str, token_type: str) -> Optional[int]:
    sub = _subject(token, token_type)
    try:
        return int(sub) if sub is not None else None
    except ValueError:
        return None


def get_subject_from_access(token: str) -> Optional[int]:
    """Return user id if token is a valid access token."""
    return _user_id(token, "access")


def get_subject_from_refresh(token: str) -> Optional[int]:
    """Return user id if token is a valid refresh token."""
    return _user_id(token, "refresh")


def verify_state_token(token: str, provider: str) -> bool:
    """True if token is an unexpired state issued for this provider."""
    return _subject(token, "oauth_state") == provider
