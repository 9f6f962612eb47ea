"""Shared test fixtures."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

from app.domain.runtime import ChatRuntime
from app.infra.auth import hash_password
from app.infra.db import get_db, make_session_factory
from app.main import app
from app.models.db_models import Actor, ActorResource, Base, User

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class ScriptedDie:
    """d6 source that hands out queued faces, then ``fallback`` forever."""

    def __init__(self, *faces: int, fallback: int = 3) -> None:
        self.faces = list(faces)
        self.fallback = fallback
        self.calls = 0

    def push(self, *faces: int) -> None:
        self.faces.extend(faces)

    def __call__(self) -> int:
        self.calls += 1
        return self.faces.pop(0) if self.faces else self.fallback


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    factory = make_session_factory(db_engine)
    async with factory() as session:
        yield session


@pytest.fixture
def dice():
    return ScriptedDie()


@pytest_asyncio.fixture
async def runtime(db_engine, dice):
    rt = ChatRuntime(
        make_session_factory(db_engine),
        roll_die=dice,
        dom_wait_timeout=0.05,
        batch_window=0.01,
    )
    yield rt
    await rt.close()


@pytest_asyncio.fixture
async def client(db_engine, runtime):
    factory = make_session_factory(db_engine)

    async def _override_get_db():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.state.runtime = runtime
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    app.state.runtime = None


async def register_user(
    client: AsyncClient,
    username: str = "TestUser",
    password: str | None = None,
) -> dict:
    """Register a user and return dict with user_id, api_key, headers."""
    body = {"username": username}
    if password is not None:
        body["password"] = password
    resp = await client.post("/api/auth/register", json=body)
    assert resp.status_code == 200
    data = resp.json()
    return {
        "user_id": data["user_id"],
        "api_key": data["api_key"],
        "access_token": data["access_token"],
        "headers": {"Authorization": f"Bearer {data['access_token']}"},
    }


async def make_user(db, username: str, role: str = "user", password: str | None = None) -> User:
    """Insert a user directly and commit."""
    user = User(
        username=username,
        role=role,
        password_hash=hash_password(password) if password else None,
    )
    db.add(user)
    await db.commit()
    return user


async def make_actor(
    db,
    owner: User | None,
    name: str = "Hero",
    resources: list[tuple[str, str, int, int]] = (),
) -> Actor:
    """Insert an actor with ``(title, tag, value, max_value)`` pools and commit."""
    actor = Actor(owner_id=owner.id if owner else None, name=name)
    db.add(actor)
    await db.flush()
    for order, (title, tag, value, max_value) in enumerate(resources):
        db.add(
            ActorResource(
                actor_id=actor.id,
                title=title,
                tag=tag,
                value=value,
                max_value=max_value,
                icon=f"icons/{title.lower()}.svg",
                sort_order=order,
            )
        )
    await db.commit()
    return actor


async def resource_value(runtime: ChatRuntime, actor_id: str, tag: str) -> int:
    actor = await runtime.store.get_actor(actor_id)
    return next(r.value for r in actor.resources if r.tag == tag)
