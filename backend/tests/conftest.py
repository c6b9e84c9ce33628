import sys
import os
import pytest
from typing import AsyncGenerator, Callable
from uuid import uuid4

# Add the backend directory to the Python path
# This is necessary for pytest to find the 'main' module and other packages
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

from httpx import AsyncClient, ASGITransport

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from main import app
from core.database import get_db, Base, db_manager
from models.releases import Release, ReleaseTrack
from models.unlock_codes import UnlockCode, CODE_STATUS_UNUSED
from models.user import User
from services.security import default_security_config


@pytest.fixture
async def async_engine(tmp_path):
    """
    File-backed SQLite per test so separate sessions get separate connections,
    which the concurrent redemption tests rely on.
    """
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'shc_test.db'}"
    engine = create_async_engine(
        database_url,
        echo=False,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def async_client(async_engine, session_factory) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    db_manager.set_engine_and_session_factory(async_engine, session_factory)
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
        db_manager.set_engine_and_session_factory(None, None)


@pytest.fixture
def security_config():
    """Default redemption policy; tests tweak it with model_copy(update=...)."""
    return default_security_config()


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable:
    async def _make_user(role: str = "Listener", is_active: bool = True) -> User:
        user = User(
            id=uuid4(),
            email=f"{role.lower()}_{uuid4().hex[:12]}@example.com",
            firstname="Test",
            lastname=role,
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        return user
    return _make_user


@pytest.fixture
async def test_user(make_user) -> User:
    return await make_user()


@pytest.fixture
async def admin_user(make_user) -> User:
    return await make_user(role="Admin")


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    return {"X-User-Id": str(test_user.id)}


@pytest.fixture
def admin_auth_headers(admin_user: User) -> dict:
    return {"X-User-Id": str(admin_user.id)}


@pytest.fixture
async def test_release(db_session: AsyncSession, make_user) -> Release:
    """Three-track album by a creator account."""
    creator = await make_user(role="Creator")
    release = Release(
        id=uuid4(),
        title="Night Drive",
        cover_art=None,
        release_type="ALBUM",
        creator=creator,
        tracks=[
            ReleaseTrack(title=title, position=position)
            for position, title in enumerate(["Intro", "Night Drive", "Outro"], start=1)
        ],
    )
    db_session.add(release)
    await db_session.commit()
    return release


@pytest.fixture
def make_code(db_session: AsyncSession, test_release: Release) -> Callable:
    async def _make_code(code: str, **kwargs) -> UnlockCode:
        unlock_code = UnlockCode(
            id=uuid4(),
            code=code,
            status=kwargs.pop("status", CODE_STATUS_UNUSED),
            release_id=test_release.id,
            **kwargs
        )
        db_session.add(unlock_code)
        await db_session.commit()
        return unlock_code
    return _make_code
