"""Bootstrap helpers for default data."""

from __future__ import annotations

import logging

from app.core.config import get_settings
from app.db.session import get_sessionmaker
from app.models import UserRole
from app.services.auth_service import create_user, get_user_by_email

logger = logging.getLogger(__name__)


async def ensure_default_admin() -> None:
    """Create the configured admin user if one does not yet exist."""

    settings = get_settings()
    if not settings.bootstrap_admin_email or not settings.bootstrap_admin_password:
        logger.debug("No bootstrap admin configured")
        return
    sessionmaker = get_sessionmaker(settings.database_url)
    async with sessionmaker() as session:
        if await get_user_by_email(session, settings.bootstrap_admin_email) is not None:
            return
        await create_user(
            session,
            email=settings.bootstrap_admin_email,
            password=settings.bootstrap_admin_password,
            first_name="Site",
            last_name="Admin",
            role=UserRole.SUPER_ADMIN,
        )
        logger.info("Bootstrap admin %s created", settings.bootstrap_admin_email)
