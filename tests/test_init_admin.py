"""Tests for default admin auto-creation."""

from sqlalchemy import select

from app.infra.auth import verify_api_key, verify_password
from app.infra.config import Settings
from app.infra.db import make_session_factory
from app.infra.init_admin import ensure_default_admin
from app.models.db_models import User


def _settings(**overrides) -> Settings:
    values = {
        "default_admin_username": "",
        "default_admin_password": "",
        "default_admin_email": None,
        "app_debug": True,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


async def _count_users(factory):
    async with factory() as db:
        result = await db.execute(select(User))
        return len(result.scalars().all())


async def test_ensure_default_admin_creates_user(db_engine):
    """Admin user is created with correct attributes."""
    factory = make_session_factory(db_engine)

    raw_key = await ensure_default_admin(factory, _settings(
        default_admin_username="gm",
        default_admin_password="testpass123",
        default_admin_email="gm@test.com",
    ))

    async with factory() as db:
        result = await db.execute(select(User).where(User.username == "gm"))
        user = result.scalar_one_or_none()
        assert user is not None
        assert user.is_admin
        assert user.is_active is True
        assert verify_api_key(raw_key, user.api_key_hash)
        assert verify_password("testpass123", user.password_hash)
        assert user.email == "gm@test.com"


async def test_ensure_default_admin_skips_when_not_configured(db_engine):
    """No user created when DEFAULT_ADMIN_USERNAME is empty."""
    factory = make_session_factory(db_engine)
    assert await ensure_default_admin(factory, _settings()) is None
    assert await _count_users(factory) == 0


async def test_ensure_default_admin_idempotent(db_engine):
    """Calling twice creates only one user."""
    factory = make_session_factory(db_engine)
    config = _settings(default_admin_username="gm", default_admin_password="pass")

    assert await ensure_default_admin(factory, config) is not None
    assert await ensure_default_admin(factory, config) is None
    assert await _count_users(factory) == 1


async def test_ensure_default_admin_skips_existing_user(db_engine):
    """Does NOT promote an existing non-admin user with the same username."""
    factory = make_session_factory(db_engine)
    async with factory() as db:
        db.add(User(username="gm", role="user", is_active=True))
        await db.commit()

    await ensure_default_admin(factory, _settings(
        default_admin_username="gm",
        default_admin_password="pass",
    ))

    async with factory() as db:
        result = await db.execute(select(User).where(User.username == "gm"))
        assert result.scalar_one().role == "user"
    assert await _count_users(factory) == 1


async def test_ensure_default_admin_without_password(db_engine):
    """User created with password_hash=None when no password configured."""
    factory = make_session_factory(db_engine)

    await ensure_default_admin(factory, _settings(default_admin_username="gm"))

    async with factory() as db:
        result = await db.execute(select(User).where(User.username == "gm"))
        user = result.scalar_one()
        assert user.password_hash is None
        assert user.api_key_hash is not None


async def test_ensure_default_admin_logs_api_key(db_engine, caplog):
    """API key appears in log output on creation."""
    factory = make_session_factory(db_engine)

    with caplog.at_level("INFO", logger="ezd6.init_admin"):
        raw_key = await ensure_default_admin(factory, _settings(
            default_admin_username="gm",
            default_admin_password="pass",
        ))

    assert "Default admin 'gm' created" in caplog.text
    assert raw_key in caplog.text


async def test_missing_password_warns_outside_debug(db_engine, caplog):
    factory = make_session_factory(db_engine)

    with caplog.at_level("WARNING", logger="ezd6.init_admin"):
        await ensure_default_admin(factory, _settings(
            default_admin_username="gm",
            app_debug=False,
        ))

    assert "only be accessible via API key" in caplog.text
