"""Shared fixtures: a throwaway SQLite database and user/loan factories.

The environment is configured before any ``peerlend`` import so the
settings singleton and the engine pick up the test database.
"""

import itertools
import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal

_DB_DIR = tempfile.mkdtemp(prefix="peerlend-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest_asyncio  # noqa: E402

import peerlend.models  # noqa: E402,F401
from peerlend.database import Base, async_session, engine  # noqa: E402
from peerlend.models.user import User, UserRole  # noqa: E402
from peerlend.services import loan_lifecycle  # noqa: E402

_emails = itertools.count(1)


@pytest_asyncio.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with async_session() as session:
        yield session
    await engine.dispose()


@pytest_asyncio.fixture
async def other_db(db):
    """A second, independent session on the same database."""
    async with async_session() as session:
        yield session


async def create_user(
    db,
    role: UserRole = UserRole.BORROWER,
    *,
    balance=0,
    onboarded: bool = True,
    age_days: int | None = None,
    **fields,
) -> User:
    n = next(_emails)
    user = User(
        email=f"user{n}@example.com",
        first_name=fields.pop("first_name", f"User{n}"),
        last_name=fields.pop("last_name", "Test"),
        phone=fields.pop("phone", f"+9190000{n:05d}"),
        whatsapp=fields.pop("whatsapp", f"+9190000{n:05d}"),
        role=role,
        is_onboarding_complete=onboarded,
        lending_limit=Decimal(str(balance)),
        available_balance=Decimal(str(balance)),
        **fields,
    )
    if age_days is not None:
        user.created_at = datetime.now(timezone.utc) - timedelta(days=age_days)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def borrower(db):
    return await create_user(db, UserRole.BORROWER)


@pytest_asyncio.fixture
async def lender(db):
    return await create_user(db, UserRole.LENDER, balance=50000)


@pytest_asyncio.fixture
async def admin(db):
    return await create_user(db, UserRole.ADMIN)


async def running_loan(db, borrower, lender, *, amount=10000, duration=30, interest_rate=12):
    """A loan that has been created, accepted and fulfilled."""
    loan = await loan_lifecycle.create_loan_request(
        db, borrower.id, amount=amount, purpose="Working capital",
        duration=duration, interest_rate=interest_rate,
    )
    await loan_lifecycle.accept_loan_request(db, lender.id, loan.id)
    return await loan_lifecycle.mark_fulfilled(db, borrower.id, loan.id)
