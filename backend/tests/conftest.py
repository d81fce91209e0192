"""
Centralized Test Configuration.
"""

import pytest
from datetime import date, datetime, timezone

from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from backend.app.main import app
from backend.app.core.calendar import BusinessCalendar, get_calendar
from backend.app.core.redis_client import get_redis
import backend.app.core.redis_client as redis_client_module
from backend.app.db.session import get_db, get_session_factory, Base
from backend.app.domain.ledger.mutator import BalanceMutator
from backend.app.domain.ledger.provenance import Actor
from backend.app.domain.ledger.resolver import BalanceResolver
from backend.app.models.bank_account import BankAccount
from backend.app.models.card import Card
from backend.app.models.enums import UserKind
from backend.app.models.user import User
from backend.tests.helpers import BUSINESS_TZ, FrozenClock, MockRedis, auth_headers

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Event handler to enable foreign keys for SQLite
@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    frozen = FrozenClock(datetime(2024, 1, 1, 7, 0, tzinfo=timezone.utc))
    frozen.set_day(date(2024, 1, 1))
    return frozen


@pytest.fixture
def calendar(clock):
    return BusinessCalendar(BUSINESS_TZ, clock=clock)


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
async def client(session_factory, calendar, mock_redis):
    """Async client with the database, calendar and redis swapped for test doubles."""
    # Patch the global redis client used by /health
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = mock_redis

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_calendar] = lambda: calendar
    app.dependency_overrides[get_redis] = lambda: mock_redis

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


# Users and accounts

async def _create_user(db_session, username: str, kind: UserKind, is_active: bool = True) -> User:
    user = User(
        email=f"{username}@venue.test",
        username=username,
        full_name=username.capitalize(),
        hashed_password="!",
        kind=kind,
        is_active=is_active,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def admin_user(db_session):
    return await _create_user(db_session, "admin", UserKind.ADMIN)


@pytest.fixture
async def staff_user(db_session):
    return await _create_user(db_session, "cashier", UserKind.USER)


@pytest.fixture
async def inactive_user(db_session):
    return await _create_user(db_session, "former", UserKind.USER, is_active=False)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def staff_headers(staff_user):
    return auth_headers(staff_user)


@pytest.fixture
def staff_actor(staff_user):
    return Actor(id=staff_user.id, display_name=staff_user.display_name, kind=staff_user.kind)


@pytest.fixture
async def bank_account(db_session):
    account = BankAccount(account_name="Main", account_number="0001", bank_name="Test Bank", is_default=True)
    db_session.add(account)
    await db_session.commit()
    await db_session.refresh(account)
    return account


@pytest.fixture
async def card(db_session):
    terminal = Card(name="POS", bank_name="Test Bank", is_default=True)
    db_session.add(terminal)
    await db_session.commit()
    await db_session.refresh(terminal)
    return terminal


# Ledger services wired to the test calendar

@pytest.fixture
def mutator(calendar):
    return BalanceMutator(calendar)


@pytest.fixture
def resolver(calendar):
    return BalanceResolver(calendar)
