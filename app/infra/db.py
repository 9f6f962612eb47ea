"""SQLAlchemy async engine and session factory."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.infra.config import settings


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Roll documents are handed to other clients after commit, so keep them loaded.
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = create_async_engine(settings.database_url, echo=False, future=True)

async_session_factory = make_session_factory(engine)


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """FastAPI dependency that yields a database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create tables (for dev/testing; production uses Alembic)."""
    from app.models.db_models import Base

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
