"""Role helper for explicit authorization checks."""

from __future__ import annotations

from fastapi import HTTPException, status

from app.models.user import ADMIN_ROLES, User, UserRole


def require_roles(user: User | None, allowed: set[UserRole]) -> User:
    """Raise HTTP 403 unless ``user`` holds one of the allowed roles."""

    if user is None or user.role not in allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


def require_admin(user: User | None) -> User:
    """Shortcut for admin and super-admin only routes."""

    return require_roles(user, ADMIN_ROLES)


__all__ = ["require_admin", "require_roles"]
