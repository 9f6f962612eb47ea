"""Create the configured game-master (admin) account on first launch.

Rolls made by players who are not the author of a message can only be
persisted through an online admin, so a fresh install needs one.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.infra.auth import generate_api_key, hash_password
from app.infra.config import Settings, settings as default_settings
from app.models.db_models import User

logger = logging.getLogger("ezd6.init_admin")


async def ensure_default_admin(
    session_factory: async_sessionmaker[AsyncSession],
    config: Settings | None = None,
) -> str | None:
    """Create the default admin if configured and missing.

    Idempotent: an existing user with the configured username is left alone.

    Returns:
        The raw API key of a newly created admin, else None.
    """
    config = config or default_settings
    username = config.default_admin_username.strip()
    if not username:
        logger.debug("DEFAULT_ADMIN_USERNAME not set, skipping default admin creation.")
        return None

    password = config.default_admin_password
    if not config.app_debug and not password:
        logger.warning(
            "DEFAULT_ADMIN_PASSWORD is empty in non-debug mode. "
            "The admin user will only be accessible via API key."
        )

    async with session_factory() as db:
        result = await db.execute(select(User).where(User.username == username))
        existing = result.scalar_one_or_none()
        if existing is not None:
            logger.info(
                "Default admin '%s' already exists (id=%s, role=%s).",
                username,
                existing.id,
                existing.role,
            )
            return None

        raw_api_key, api_key_hash = generate_api_key()
        user = User(
            username=username,
            email=config.default_admin_email,
            api_key_hash=api_key_hash,
            password_hash=hash_password(password) if password else None,
            role="admin",
            is_active=True,
        )
        db.add(user)
        await db.commit()

    logger.info("Default admin '%s' created (id=%s).", username, user.id)
    logger.info("Admin API key (shown once): %s", raw_api_key)
    if not password:
        logger.info("No password set; log in with the API key.")
    return raw_api_key
