"""
Test fixtures.

Environment is pinned before `app` is imported: settings are read once at
import time. Each test gets a fresh schema in a file-backed SQLite database.
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Optional

_DB_DIR = tempfile.mkdtemp(prefix="phantom-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["UPDATE_SECRET"] = "test-secret"
os.environ["OTEL_ENABLED"] = "false"
os.environ["SIMILARITY_SCHEDULE_ENABLED"] = "false"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.database import AsyncSessionLocal, Base, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.models import (  # noqa: E402
    Creator,
    Post,
    Subscription,
    User,
    UserPreference,
    UserSimilarity,
)

UPDATE_SECRET = "test-secret"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@pytest_asyncio.fixture(autouse=True)
async def db_schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session():
    async with AsyncSessionLocal() as s:
        yield s


@pytest_asyncio.fixture
async def client():
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c


class Factory:
    """Row builders for tests that talk to the store directly."""

    def __init__(self, session) -> None:
        self.session = session
        self._n = 0

    async def _add(self, obj):
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def user(self, username: Optional[str] = None) -> User:
        self._n += 1
        return await self._add(User(username=username or f"user_{self._n}"))

    async def creator(self, name: Optional[str] = None) -> Creator:
        owner = await self.user()
        return await self._add(
            Creator(user_id=owner.id, name=name or f"creator_{owner.id}")
        )

    async def post(
        self,
        creator: Creator,
        *,
        is_paid: bool = False,
        view_count: int = 0,
        created_at: Optional[datetime] = None,
        title: str = "",
    ) -> Post:
        return await self._add(
            Post(
                creator_id=creator.id,
                title=title,
                content="",
                is_paid=is_paid,
                view_count=view_count,
                created_at=created_at or utcnow(),
            )
        )

    async def subscribe(
        self, user_id: int, creator_id: int, expires_in_days: int = 30
    ) -> Subscription:
        return await self._add(
            Subscription(
                user_id=user_id,
                creator_id=creator_id,
                expires_at=utcnow() + timedelta(days=expires_in_days),
            )
        )

    async def rate(self, user_id: int, creator_id: int, score: int) -> UserPreference:
        return await self._add(
            UserPreference(user_id=user_id, creator_id=creator_id, preference_score=score)
        )

    async def similarity(self, a: int, b: int, score: float) -> UserSimilarity:
        a, b = min(a, b), max(a, b)
        return await self._add(
            UserSimilarity(user1_id=a, user2_id=b, similarity_score=score)
        )


@pytest.fixture
def factory(session) -> Factory:
    return Factory(session)
