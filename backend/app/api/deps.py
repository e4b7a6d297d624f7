"""Common API dependencies."""

from __future__ import annotations

import uuid
from typing import Annotated
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.security import decode_access_token
from app.core.settings import get_payment_settings
from app.db.session import get_session
from app.integrations import StripeClient
from app.models.user import User, UserStatus
from app.security.permissions import require_admin
from app.services.notification_service import BookingNotifier

settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_v1_prefix}/auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.api_v1_prefix}/auth/token", auto_error=False
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async database session."""
    async for session in get_session():
        yield session


async def _user_from_token(session: AsyncSession, token: str) -> User | None:
    try:
        payload = decode_access_token(token)
    except JWTError:
        return None

    subject = payload.get("sub")
    if subject is None:
        return None

    try:
        user_id = uuid.UUID(subject)
    except (ValueError, TypeError):
        return None

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or user.status != UserStatus.ACTIVE:
        return None
    return user


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> User:
    """Authenticate request via bearer token."""
    user = await _user_from_token(session, token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_active_user(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Ensure the current user is active."""
    return current_user


async def get_optional_user(
    token: Annotated[str | None, Depends(optional_oauth2_scheme)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> User | None:
    """Return the caller when a valid bearer token is present.

    Guest checkout is anonymous, so a missing or invalid token is not an error.
    """
    if not token:
        return None
    return await _user_from_token(session, token)


async def get_admin_user(
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> User:
    """Restrict a route to admins and super admins."""
    return require_admin(current_user)


def get_payment_gateway() -> StripeClient | None:
    """Build the gateway client, or ``None`` when Stripe is not configured."""
    payment_settings = get_payment_settings()
    if not payment_settings.stripe_secret_key:
        return None
    return StripeClient(
        payment_settings.stripe_secret_key,
        webhook_secret=payment_settings.stripe_webhook_secret,
    )


def get_booking_notifier() -> BookingNotifier:
    return BookingNotifier()
