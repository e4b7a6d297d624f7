"""Password hashing and the bearer tokens issued by ``/auth/token``.

Access tokens are HS256 JWTs carrying the user id as ``sub``, the user's
role, the issue time and a ``type`` claim so that only access tokens are
accepted on authenticated routes.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
from jose import JWTError, jwt

from app.core.config import get_settings

ACCESS_TOKEN_TYPE = "access"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())
    except (ValueError, TypeError):
        # Malformed stored hash.
        return False


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def create_access_token(
    subject: str, expires_delta: timedelta | None = None, **extra: Any
) -> str:
    """Sign an access token for ``subject``; ``extra`` adds claims such as ``role``."""
    settings = get_settings()
    issued_at = datetime.now(UTC)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims: dict[str, Any] = {
        **extra,
        "sub": subject,
        "type": ACCESS_TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify ``token`` and return its claims.

    Raises :class:`jose.JWTError` for bad signatures, expired tokens, tokens
    of another type and tokens without a subject.
    """
    settings = get_settings()
    claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    if claims.get("type") != ACCESS_TOKEN_TYPE:
        raise JWTError("Not an access token")
    if not claims.get("sub"):
        raise JWTError("Token has no subject")
    return claims
