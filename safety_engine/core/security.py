"""JWT utilities for the identity collaborator."""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from safety_engine.core.config import settings


def create_access_token(subject: str, role: str = "user", extra: dict[str, Any] | None = None) -> str:
    """Create a JWT access token (used by the identity service and tests)."""
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.jwt_expire_minutes)
    payload = {
        "sub": str(subject),
        "role": role,
        "exp": expire,
        "iat": now,
    }
    if extra:
        payload.update(extra)
    return jwt.encode(
        payload,
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT. Returns payload or None if invalid."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None
