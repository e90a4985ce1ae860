"""
Pytest fixtures for testing.

Provides:
- Async database session on an in-memory SQLite database
- A resource registry populated with the test resource types
- Factory fixtures for users, permissions, roles and grants
"""

from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from rolegate.core.auth.registry import ResourceRegistry
from rolegate.core.hooks import HookManager
from rolegate.models.base import Base
from rolegate.models.user import User
from rolegate.schemas.rbac import GrantOptions
from rolegate.extensions.auth.rbac import (
    Ability,
    MembershipService,
    Permission,
    PermissionCatalog,
    Role,
    RoleAbility,
    RoleService,
)

from tests import resources as test_resources


# Test database URL (SQLite in-memory for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create database session with automatic rollback.

    Each test gets a fresh database that's dropped after.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def registry() -> ResourceRegistry:
    """Resource registry with User as the actor type and every test resource."""
    registry = ResourceRegistry()
    registry.register_actor(User)
    for model in test_resources.ALL_RESOURCES:
        registry.register(model)
    unmapped = (test_resources.Upload, test_resources.Gadget, test_resources.Board, test_resources.Kiosk)
    for model in unmapped:
        registry.register(model, fields=["id"])
    return registry


@pytest.fixture
def hook_manager() -> HookManager:
    """Isolated hook manager (the global one is left untouched)."""
    return HookManager()


# ============ Factory Fixtures ============


class UserFactory:
    """Factory for creating test users."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, email: str | None = None, name: str = "Test User") -> User:
        """Create a user in the database."""
        email = email or f"test-{uuid4().hex[:8]}@example.com"

        user = User(email=email, name=name)
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user


class RBACFactory:
    """Shortcuts for building roles and grants in tests."""

    def __init__(self, db: AsyncSession, registry: ResourceRegistry, hooks: HookManager):
        self.db = db
        self.registry = registry
        self.catalog = PermissionCatalog(db)
        self.roles = RoleService(db)
        self.members = MembershipService(db, hooks=hooks)

    async def role(self, name: str, priority: int = 50, **kwargs) -> Role:
        existing = await self.roles.get_by_name(name)
        if existing is not None:
            return existing
        return await self.roles.create(name, priority=priority, **kwargs)

    async def permission(self, action: str, resource_type: str) -> Permission:
        return await self.catalog.get_or_create(action, resource_type)

    async def grant(self, role: Role, action: str, resource_type: str, **options) -> RoleAbility:
        permission = await self.permission(action, resource_type)
        return await self.roles.grant(role, permission, GrantOptions(**options))

    async def assign(self, user: User, *roles: Role) -> None:
        for role in roles:
            await self.members.assign(user, role)

    async def ability(self, actor, context=None) -> Ability:
        return await Ability.build(self.db, actor, context, registry=self.registry)


@pytest_asyncio.fixture
async def user_factory(db: AsyncSession) -> UserFactory:
    """Fixture that provides UserFactory."""
    return UserFactory(db)


@pytest_asyncio.fixture
async def test_user(user_factory: UserFactory) -> User:
    """Create a standard test user."""
    return await user_factory.create()


@pytest_asyncio.fixture
async def other_user(user_factory: UserFactory) -> User:
    """A second user, for ownership checks."""
    return await user_factory.create(name="Other User")


@pytest_asyncio.fixture
async def rbac(db: AsyncSession, registry: ResourceRegistry, hook_manager: HookManager) -> RBACFactory:
    """Fixture that provides RBACFactory."""
    return RBACFactory(db, registry, hook_manager)
