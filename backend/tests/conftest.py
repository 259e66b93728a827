"""
Pytest fixtures for test database, client, users and tours.

Each test gets a fresh schema. Set TEST_DATABASE_URL to a PostgreSQL
asyncpg URL to run against Postgres (row locks, real SQLSTATEs);
otherwise a per-test SQLite file is used.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator, Optional

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourbook.main import app
from tourbook.db.base import Base
from tourbook.db.session import build_engine, build_sessionmaker, get_db
from tourbook.core.security import create_access_token, hash_password
from tourbook.infrastructure import BookingLedger
from tourbook.models.user import User
from tourbook.models.tour import Tour, TourStatus

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Create tables, yield engine, then drop tables for isolation."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'tourbook_test.db'}"
    test_engine = build_engine(url)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests each get their own session on the test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# Helpers. They open short-lived sessions so no test holds a
# transaction open while the code under test runs.

async def make_user(
    session_factory,
    username: str,
    roles: Optional[list[str]] = None,
    password: str = "testpassword123",
) -> User:
    async with session_factory() as session:
        user = User(
            email=f"{username}@example.com",
            username=username,
            hashed_password=hash_password(password),
            roles=roles or ["USER"],
        )
        session.add(user)
        await session.commit()
        return user


async def make_tour(
    session_factory,
    owner: User,
    max_participants: int = 10,
    participants_count: int = 0,
    status: str = TourStatus.PUBLISHED,
    title: str = "Besseggen Ridge",
) -> Tour:
    start = datetime.now(timezone.utc) + timedelta(days=30)
    async with session_factory() as session:
        tour = Tour(
            title=title,
            short_description="Classic ridge walk",
            start_location="Gjendesheim",
            end_location="Memurubu",
            start_datetime=start,
            end_datetime=start + timedelta(hours=7),
            max_participants=max_participants,
            participants_count=participants_count,
            status=status,
            created_by=owner.id,
        )
        session.add(tour)
        await session.commit()
        return tour


async def load_tour(session_factory, tour_id: int) -> Optional[Tour]:
    async with session_factory() as session:
        return await session.get(Tour, tour_id)


async def confirmed_count(session_factory, tour_id: int) -> int:
    async with session_factory() as session:
        return await BookingLedger(session).count_confirmed(tour_id)


def auth_headers_for(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def test_user(session_factory) -> User:
    return await make_user(session_factory, "testuser")


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict:
    """Authorization headers with Bearer token for a plain USER."""
    return auth_headers_for(test_user)


@pytest_asyncio.fixture
async def tour_leader(session_factory) -> User:
    return await make_user(session_factory, "leader", roles=["USER", "TOUR_LEADER"])


@pytest_asyncio.fixture
async def leader_headers(tour_leader: User) -> dict:
    return auth_headers_for(tour_leader)


@pytest_asyncio.fixture
async def admin_user(session_factory) -> User:
    return await make_user(session_factory, "admin", roles=["USER", "ADMIN"])


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict:
    return auth_headers_for(admin_user)


@pytest_asyncio.fixture
async def test_tour(session_factory, tour_leader: User) -> Tour:
    """A published tour with 10 spots."""
    return await make_tour(session_factory, tour_leader, max_participants=10)


@pytest_asyncio.fixture
async def draft_tour(session_factory, tour_leader: User) -> Tour:
    return await make_tour(session_factory, tour_leader, status=TourStatus.DRAFT, title="Draft Tour")


@pytest_asyncio.fixture
async def single_spot_tour(session_factory, tour_leader: User) -> Tour:
    return await make_tour(session_factory, tour_leader, max_participants=1, title="Solo Glacier Walk")
