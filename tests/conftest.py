"""Pytest fixtures and configuration."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from wealth_access.core.exceptions import UnauthorizedError
from wealth_access.core.rbac import get_verified_claims
from wealth_access.db.session import Base, get_db
from wealth_access.main import app
from wealth_access.models.user import User
from wealth_access.repositories.hierarchy_store import HierarchyStore
from wealth_access.schemas.auth import VerifiedClaims

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

# Test database URL (in-memory SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def claims_for(user: User, **overrides: Any) -> VerifiedClaims:
    """Claims that reconcile to ``user`` without changing their role."""
    values: dict[str, Any] = {
        "subject_id": user.external_id or f"sub-{user.login_key}",
        "login_name": user.login_key,
        "email": user.email,
        "role_attribute": user.role,
    }
    values.update(overrides)
    return VerifiedClaims(**values)


@dataclass
class Org:
    """Sample organisation used across hierarchy tests.

    admin (super_admin)
    └── director
        └── zonal
            ├── branch (branch 10, zone 1)
            │   ├── rm_anita
            │   │   ├── client_a1
            │   │   └── client_a2
            │   └── rm_bala
            │       └── client_b1
            └── branch2 (branch 20, zone 1)
    """

    users: dict[str, User] = field(default_factory=dict)
    # Plain ids stay usable after a rollback has expired the ORM instances.
    ids: dict[str, int] = field(default_factory=dict)

    def __getattr__(self, name: str) -> User:
        try:
            return self.users[name]
        except KeyError:
            raise AttributeError(name) from None


ORG_LAYOUT: list[tuple[str, str, str | None, dict[str, Any]]] = [
    ("admin", "super_admin", None, {"name": "Asha Admin"}),
    ("director", "director", "admin", {"name": "Dev Director"}),
    ("zonal", "zonal_head", "director", {"name": "Zoya Zonal", "zone_id": 1}),
    ("branch", "branch_manager", "zonal", {"name": "Bhavna Branch", "zone_id": 1, "branch_id": 10}),
    ("branch2", "branch_manager", "zonal", {"name": "Bharat Branch", "zone_id": 1, "branch_id": 20}),
    ("rm_anita", "rm", "branch", {"name": "Anita", "zone_id": 1, "branch_id": 10}),
    ("rm_bala", "rm", "branch", {"name": "Bala", "zone_id": 1, "branch_id": 10}),
    ("client_a1", "client", "rm_anita", {"name": "Client A1", "branch_id": 10}),
    ("client_a2", "client", "rm_anita", {"name": "Client A2", "branch_id": 10}),
    ("client_b1", "client", "rm_bala", {"name": "Client B1", "branch_id": 10}),
]


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store(db_session: AsyncSession) -> HierarchyStore:
    return HierarchyStore(db_session)


@pytest_asyncio.fixture
async def org(store: HierarchyStore) -> Org:
    """Persist the sample organisation and return its users by key."""
    result = Org()
    for key, role, parent_key, extra in ORG_LAYOUT:
        parent_id = result.ids[parent_key] if parent_key else None
        user = result.users[key] = await store.create(
            {
                "login_key": key,
                "external_id": f"sub-{key}",
                "email": f"{key}@example.com",
                "role": role,
                "parent_id": parent_id,
                **extra,
            }
        )
        result.ids[key] = user.id
    return result


@dataclass
class ClaimsBox:
    """Claims handed to the app in place of the token-verification middleware."""

    claims: VerifiedClaims | None = None

    def login_as(self, user: User, **overrides: Any) -> None:
        self.claims = claims_for(user, **overrides)


@pytest.fixture
def claims_box() -> ClaimsBox:
    return ClaimsBox()


@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    claims_box: ClaimsBox,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client with overridden dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_verified_claims() -> VerifiedClaims:
        if claims_box.claims is None:
            raise UnauthorizedError(message="Authentication required")
        return claims_box.claims

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_verified_claims] = override_get_verified_claims

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_claims():
    """Factory for claims that reconcile to an existing user."""
    return claims_for
