"""Shared test fixtures.

Provides:
- A file-backed SQLite database (aiosqlite) with every mapped table created
- A session_factory callable with the same shape as core.database.get_session
- DealRepository bound to that database
- Seeded lookup rows: one user, one company, one contact
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

import src.crm.deals.models  # noqa: F401
from src.crm.core.database import Base
from src.crm.core.security import hash_password
from src.crm.deals.repository import DealRepository
from src.crm.models.directory import CompanyModel, ContactModel, UserModel

USER_PASSWORD = "s3cret-pass"


@dataclass
class Directory:
    """Ids of the seeded lookup rows and the seeded user's password."""

    user_id: uuid.UUID
    company_id: uuid.UUID
    contact_id: uuid.UUID
    password: str = USER_PASSWORD


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'crm.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Async generator factory yielding sessions on the test database."""

    async def _factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(db_engine, expire_on_commit=False) as session:
            yield session

    return _factory


@pytest.fixture
def repo(session_factory) -> DealRepository:
    return DealRepository(session_factory=session_factory)


@pytest_asyncio.fixture
async def directory(db_engine) -> Directory:
    """Seed one user, one company and one contact working there."""
    user = UserModel(
        first_name="Alice",
        last_name="Martin",
        email="alice@example.com",
        password_hash=hash_password(USER_PASSWORD),
        role="admin",
    )
    company = CompanyModel(name="Acme SARL", city="Lyon")
    async with AsyncSession(db_engine, expire_on_commit=False) as session:
        session.add_all([user, company])
        await session.flush()
        contact = ContactModel(
            first_name="Jean",
            last_name="Dupont",
            email="jean.dupont@acme.fr",
            company_id=company.id,
        )
        session.add(contact)
        await session.commit()
    return Directory(user_id=user.id, company_id=company.id, contact_id=contact.id)
