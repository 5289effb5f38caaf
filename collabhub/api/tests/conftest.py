"""
Test Configuration and Fixtures

Shared fixtures for CollabHub API tests.
Provides an isolated in-memory database, the audit pipeline, users with
roles, and an async client against the application.
"""

import uuid
from typing import AsyncGenerator, Iterable, Optional

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from collabhub.api.access.roles import RoleService
from collabhub.api.audit.pipeline import AuditPipeline, set_audit_pipeline
from collabhub.api.auth.jwt import create_access_token
from collabhub.api.auth.service import hash_password
from collabhub.api.config import settings
from collabhub.api.db.models import Base, User
from collabhub.api.db.repositories import SqlUnitOfWork, create_uow_factory
from collabhub.api.db.session import get_db
from collabhub.api.main import create_app


TEST_PASSWORD = "TestPassword123!"


# ==================== Database Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine) -> async_sessionmaker:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
def uow_factory(session_maker):
    """UnitOfWork factory over the test database."""
    return create_uow_factory(session_maker)


@pytest_asyncio.fixture(scope="function")
async def uow(session_maker) -> AsyncGenerator[SqlUnitOfWork, None]:
    """Unit of work for service-level tests."""
    async with session_maker() as session:
        yield SqlUnitOfWork(session)
        await session.rollback()


# ==================== Audit Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def pipeline(uow_factory) -> AsyncGenerator[AuditPipeline, None]:
    """
    Audit pipeline without worker tasks.

    Queued events are processed inline by ``await pipeline.recorder.flush()``.
    """
    audit_pipeline = AuditPipeline.build(uow_factory, settings)
    set_audit_pipeline(audit_pipeline)
    yield audit_pipeline
    set_audit_pipeline(None)


@pytest.fixture(scope="function")
def recorder(pipeline):
    return pipeline.recorder


# ==================== User Fixtures ====================


@pytest.fixture(scope="function")
def make_user(uow_factory):
    """Factory creating users, optionally with global roles."""

    async def _make_user(
        email: Optional[str] = None,
        password: Optional[str] = TEST_PASSWORD,
        roles: Iterable[str] = (),
        is_active: bool = True,
    ) -> User:
        async with uow_factory() as u:
            user = await u.users.add(
                User(
                    id=uuid.uuid4(),
                    email=email or f"user-{uuid.uuid4().hex[:8]}@collabhub.io",
                    password_hash=hash_password(password) if password else None,
                    first_name="Test",
                    last_name="User",
                    is_active=is_active,
                )
            )
        if roles:
            async with uow_factory() as u:
                service = RoleService(u)
                for role in roles:
                    await service.assign_role(user.id, role)
        return user

    return _make_user


@pytest.fixture(scope="function")
def user_password() -> str:
    """Password of every user built by ``make_user``."""
    return TEST_PASSWORD


@pytest_asyncio.fixture(scope="function")
async def default_roles(uow_factory):
    """Seed the system roles."""
    async with uow_factory() as u:
        return await RoleService(u).initialize_default_roles()


@pytest_asyncio.fixture(scope="function")
async def admin_user(default_roles, make_user) -> User:
    return await make_user(email="admin@collabhub.io", roles=["admin"])


@pytest_asyncio.fixture(scope="function")
async def member_user(default_roles, make_user) -> User:
    return await make_user(email="member@collabhub.io", roles=["member"])


def token_for(user: User, roles: Iterable[str] = (), permissions: Iterable[str] = ()) -> str:
    return create_access_token(user.id, user.email, roles, permissions)


@pytest.fixture(scope="function")
def admin_headers(admin_user) -> dict:
    """Authorization headers for the admin user. The token carries no permissions."""
    return {"Authorization": f"Bearer {token_for(admin_user)}"}


@pytest.fixture(scope="function")
def member_headers(member_user) -> dict:
    """Authorization headers for a regular member."""
    return {"Authorization": f"Bearer {token_for(member_user)}"}


# ==================== Application Fixtures ====================


@pytest.fixture(scope="function")
def app_factory(session_maker, pipeline):
    """Build apps against the test database (settings are read at build time)."""

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def _create() -> FastAPI:
        test_app = create_app()
        test_app.dependency_overrides[get_db] = override_get_db
        return test_app

    return _create


@pytest.fixture(scope="function")
def app(app_factory) -> FastAPI:
    """Create FastAPI app with test database."""
    return app_factory()


@pytest_asyncio.fixture(scope="function")
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

