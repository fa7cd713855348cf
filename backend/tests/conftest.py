"""Shared test fixtures for all test groups.

Database tests run on a temporary SQLite file through aiosqlite. A file
(not ``:memory:``) is used so concurrent sessions in one test see the same
rows.
"""

from datetime import UTC, datetime

import pytest
from fakeredis import FakeAsyncRedis
from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.types import TypeDecorator

import crixen.db.models  # noqa: F401
from crixen.db.base import Base, build_session_factory
from crixen.db.models.user import User
from crixen.services.order_ledger import OrderLedger
from crixen.services.subscriptions import SubscriptionStore


def _patch_columns_for_sqlite() -> None:
    """SQLite drops tzinfo; read timezone-aware columns back as UTC."""

    class _UTCAwareDateTime(TypeDecorator):
        impl = DateTime
        cache_ok = True

        def process_result_value(self, value, dialect):  # type: ignore[override]
            if value is not None and value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value

    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, DateTime) and getattr(column.type, "timezone", False):
                column.type = _UTCAwareDateTime()


_patch_columns_for_sqlite()

NOW = datetime(2030, 6, 15, 12, 0, 0, tzinfo=UTC)


class FakeNotifier:
    """Records sends. ``fail_for`` recipients get False, ``raise_for`` raise."""

    def __init__(self, fail_for: set[str] | None = None, raise_for: set[str] | None = None):
        self.sent: list[tuple[str, str, dict]] = []
        self.fail_for = fail_for or set()
        self.raise_for = raise_for or set()

    async def send(self, recipient: str, template_kind: str, params: dict) -> bool:
        if recipient in self.raise_for:
            raise RuntimeError("smtp down")
        if recipient in self.fail_for:
            return False
        self.sent.append((recipient, template_kind, params))
        return True

    def kinds_for(self, recipient: str) -> list[str]:
        return [kind for to, kind, _ in self.sent if to == recipient]


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def ledger(session_factory):
    return OrderLedger(session_factory)


@pytest.fixture
def subscriptions(session_factory):
    return SubscriptionStore(session_factory)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
async def redis():
    fake_redis = FakeAsyncRedis(decode_responses=True)
    yield fake_redis
    await fake_redis.flushall()
    await fake_redis.aclose()


@pytest.fixture
def make_user(session_factory):
    """Factory inserting a user row and returning it."""
    counter = {"n": 0}

    async def _make_user(
        tier: str = "starter",
        expires_at: datetime | None = None,
        reminder_sent: bool = False,
        email: str | None = None,
    ) -> User:
        counter["n"] += 1
        async with session_factory() as session:
            user = User(
                email=email or f"user{counter['n']}@example.com",
                tier=tier,
                subscription_expires_at=expires_at,
                expiry_reminder_sent=reminder_sent,
                created_at=NOW,
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _make_user
