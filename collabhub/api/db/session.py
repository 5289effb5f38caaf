"""
Database Session Management

Async SQLAlchemy engine shared by request handlers and the audit
pipeline workers. Request handlers get a session per request through
``get_db``; background code opens units of work from ``get_uow_factory``.
"""

import logging
from typing import AsyncGenerator, Callable, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from collabhub.api.config import settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_async_session_maker: Optional[async_sessionmaker] = None
_uow_factory: Optional[Callable] = None


def _engine_options(url: str) -> dict:
    """Pool options for the configured backend."""
    if make_url(url).get_backend_name() == "sqlite":
        return {"connect_args": {"check_same_thread": False}}

    # Audit workers and the retention worker each hold a connection
    # while a request is in flight, on top of the request sessions.
    return {
        "pool_size": settings.DATABASE_POOL_SIZE + settings.AUDIT_PIPELINE_WORKERS + 1,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT_SEC,
        "pool_pre_ping": True,
    }


def get_engine() -> AsyncEngine:
    """Get or create the database engine."""
    global _engine

    if _engine is None:
        url = make_url(settings.DATABASE_URL)
        logger.info(f"Creating database engine for {url.render_as_string(hide_password=True)}")
        _engine = create_async_engine(
            settings.DATABASE_URL,
            echo=settings.DATABASE_ECHO,
            **_engine_options(settings.DATABASE_URL),
        )

    return _engine


def get_session_maker() -> async_sessionmaker:
    """Get or create the session maker."""
    global _async_session_maker

    if _async_session_maker is None:
        _async_session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return _async_session_maker


def get_uow_factory() -> Callable:
    """Unit-of-work factory over the application engine."""
    global _uow_factory

    if _uow_factory is None:
        from collabhub.api.db.repositories import create_uow_factory

        _uow_factory = create_uow_factory(get_session_maker())

    return _uow_factory


async def init_db() -> None:
    """Connect, and create the schema when running in DEBUG mode."""
    from collabhub.api.db.models import Base

    engine = get_engine()
    async with engine.begin() as conn:
        if settings.DEBUG:
            logger.info("Creating tables (DEBUG mode)")
            await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready ({engine.dialect.name})")


async def close_db() -> None:
    """Dispose the engine and forget the cached factories."""
    global _engine, _async_session_maker, _uow_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_maker = None
        _uow_factory = None
        logger.info("Database connection closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session. Commits when the handler returns, rolls back
    when it raises.

    Usage in FastAPI:
        @router.get("/roles")
        async def list_roles(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
