"""
Request identity for the Finboard API.

The Next.js frontend authenticates users itself and forwards the user id in
three signed headers. The middleware verifies them with
``authenticate_internal_request_from_headers`` and stores the id in a context
variable that route handlers read through ``get_user_id``.
"""
import contextvars
import hashlib
import hmac
import time
from typing import Mapping, Optional

from fastapi import HTTPException, status
from pydantic import field_validator
from pydantic_settings import BaseSettings
from sqlalchemy.orm import Session

from finboard.models import User

INTERNAL_AUTH_USER_HEADER = "x-finboard-user-id"
INTERNAL_AUTH_TIMESTAMP_HEADER = "x-finboard-timestamp"
INTERNAL_AUTH_SIGNATURE_HEADER = "x-finboard-signature"
DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS = 60

_request_user_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_user_id",
    default=None,
)


class AuthSettings(BaseSettings):
    """
    Shared secret and clock tolerance for signed identity headers.

    Read on every request so a rotated INTERNAL_AUTH_SECRET applies without
    a restart.
    """
    internal_auth_secret: str = ""
    internal_auth_max_age_seconds: int = DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS

    class Config:
        extra = "ignore"

    @field_validator("internal_auth_max_age_seconds", mode="before")
    @classmethod
    def _positive_max_age(cls, value):
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS
        return parsed if parsed > 0 else DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS


def set_request_user_id(user_id: str) -> contextvars.Token:
    return _request_user_id.set(user_id)


def clear_request_user_id(token: contextvars.Token) -> None:
    _request_user_id.reset(token)


def get_request_user_id() -> Optional[str]:
    return _request_user_id.get()


def sign_internal_request(
    secret: str,
    method: str,
    path_with_query: str,
    user_id: str,
    timestamp: str,
) -> str:
    """Hex HMAC-SHA256 of ``METHOD\\npath?query\\nuser\\ntimestamp``."""
    payload = "\n".join([method.upper(), path_with_query, user_id, timestamp])
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def authenticate_internal_request_from_headers(
    method: str,
    path_with_query: str,
    headers: Mapping[str, str],
    now: Optional[float] = None,
) -> str:
    """
    Verify the signed identity headers sent by the frontend.

    Returns:
        The authenticated user id

    Raises:
        HTTPException: 401 for missing/expired/invalid signatures,
            500 when no secret is configured
    """
    user_id = headers.get(INTERNAL_AUTH_USER_HEADER, "").strip()
    timestamp = headers.get(INTERNAL_AUTH_TIMESTAMP_HEADER, "").strip()
    signature = headers.get(INTERNAL_AUTH_SIGNATURE_HEADER, "").strip()

    if not user_id or not timestamp or not signature:
        raise _unauthorized("Missing internal authentication headers.")

    try:
        signed_at = int(timestamp)
    except ValueError as exc:
        raise _unauthorized("Invalid internal authentication timestamp.") from exc

    settings = AuthSettings()
    now = time.time() if now is None else now
    if abs(int(now) - signed_at) > settings.internal_auth_max_age_seconds:
        raise _unauthorized("Expired internal authentication signature.")

    secret = settings.internal_auth_secret.strip()
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal authentication secret is not configured.",
        )

    expected = sign_internal_request(secret, method, path_with_query, user_id, timestamp)
    if not hmac.compare_digest(expected, signature):
        raise _unauthorized("Invalid internal authentication signature.")

    return user_id


def get_or_create_user(db: Session, user_id: str) -> User:
    """Return the user row, creating a free-plan row on first contact."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        user = User(id=user_id, plan="free")
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def get_user_id(user_id: Optional[str] = None) -> str:
    """
    Get the user id of the signed request being served.

    Args:
        user_id: Optional explicit user ID; must match the signed identity

    Raises:
        HTTPException: 401 without a signed identity, 403 on mismatch
    """
    request_user_id = get_request_user_id()
    if not request_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )

    if user_id and user_id != request_user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Provided user_id does not match authenticated user.",
        )

    return request_user_id
