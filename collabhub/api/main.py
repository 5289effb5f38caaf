"""
CollabHub API - Main Application Entry Point

FastAPI backend for the access-control and security-audit core.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from collabhub.api.access.roles import RoleService
from collabhub.api.audit.middleware import AuditMiddleware
from collabhub.api.audit.pipeline import get_audit_pipeline
from collabhub.api.config import settings
from collabhub.api.db.session import close_db, get_uow_factory, init_db
from collabhub.api.errors import register_error_handlers
from collabhub.api.ratelimit import RateLimitMiddleware, build_counters
from collabhub.api.services.background_tasks import (
    close_background_workers,
    init_background_workers,
)

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def seed_default_roles() -> None:
    """Create or repair the system roles."""
    async with get_uow_factory()() as uow:
        await RoleService(uow).initialize_default_roles()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    setup_logging(settings.LOG_LEVEL)
    await init_db()
    await seed_default_roles()
    await init_background_workers()
    yield
    # Shutdown
    await close_background_workers()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="CollabHub - Access control and security audit API",
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    register_error_handlers(app)

    # Last added runs outermost: CORS, then rate limiting, then auditing
    app.add_middleware(AuditMiddleware)
    if settings.RATE_LIMIT_ENABLED:
        app.add_middleware(RateLimitMiddleware, counters=build_counters(settings))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    from collabhub.api.admin.routes import router as admin_router
    from collabhub.api.auth.routes import router as auth_router
    from collabhub.api.teams.routes import router as teams_router

    app.include_router(auth_router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(teams_router, prefix="/api/v1/teams", tags=["Teams"])
    app.include_router(admin_router, prefix="/api/v1/admin", tags=["Admin"])

    # Health check endpoint
    @app.get("/api/health", tags=["Health"])
    async def health_check():
        recorder = get_audit_pipeline().recorder
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "service": settings.APP_NAME,
            "audit_pipeline": "running" if recorder.is_running else "stopped",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "collabhub.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
