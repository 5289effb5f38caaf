"""
FastAPI Dependencies

Common dependencies for dependency injection.
"""

from typing import Callable
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from collabhub.api.access.permissions import Permission, TeamRole
from collabhub.api.access.rbac import (
    AuthContext,
    PermissionResolver,
    enforce_permission,
    enforce_team_permission,
    enforce_team_role,
)
from collabhub.api.audit.incidents import IncidentManager
from collabhub.api.audit.middleware import get_client_ip
from collabhub.api.audit.pipeline import get_audit_pipeline
from collabhub.api.audit.recorder import AuditRecorder
from collabhub.api.auth.jwt import verify_token
from collabhub.api.db.repositories import SqlUnitOfWork
from collabhub.api.db.session import get_db
from collabhub.api.errors import AuthenticationError


security = HTTPBearer(auto_error=False)


def get_uow(db: AsyncSession = Depends(get_db)) -> SqlUnitOfWork:
    """Unit of work over the request's session."""
    return SqlUnitOfWork(db)


def get_recorder() -> AuditRecorder:
    return get_audit_pipeline().recorder


def get_incident_manager() -> IncidentManager:
    return get_audit_pipeline().incidents


def get_resolver(uow: SqlUnitOfWork = Depends(get_uow)) -> PermissionResolver:
    return PermissionResolver(uow.assignments, uow.memberships)


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    uow: SqlUnitOfWork = Depends(get_uow),
) -> AuthContext:
    """
    Build the authenticated actor context from the Bearer token.

    Raises:
        AuthenticationError: Missing/invalid token, or user not found or inactive
    """
    if credentials is None:
        raise AuthenticationError()

    payload = verify_token(credentials.credentials, "access")
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    try:
        user_id = UUID(payload["sub"])
    except (KeyError, ValueError):
        raise AuthenticationError("Invalid or expired token")

    user = await uow.users.get_by_id(user_id)
    if not user or not user.is_active:
        raise AuthenticationError("User not found or inactive")

    context = AuthContext(
        actor_id=user.id,
        role_names=set(payload.get("roles", [])),
        permissions=set(payload.get("permissions", [])),
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    # Picked up by the audit middleware
    request.state.user_id = user.id
    return context


def require_permission(*permissions: Permission, require_all: bool = True) -> Callable:
    """
    Dependency factory gating an endpoint on global permissions.

    Usage:
        @router.get("/audit-logs", dependencies=[Depends(require_permission(Permission.ADMIN_AUDIT_LOGS))])
    """

    async def dependency(
        context: AuthContext = Depends(get_auth_context),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> AuthContext:
        await enforce_permission(resolver, context, permissions, require_all)
        return context

    return dependency


def require_team_permission(permission: Permission) -> Callable:
    """Dependency factory gating an endpoint on a permission within ``team_id``."""

    async def dependency(
        team_id: UUID,
        context: AuthContext = Depends(get_auth_context),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> AuthContext:
        await enforce_team_permission(resolver, context, team_id, permission)
        return context

    return dependency


def require_team_role(min_role: TeamRole) -> Callable:
    """Dependency factory requiring at least ``min_role`` membership in ``team_id``."""

    async def dependency(
        team_id: UUID,
        context: AuthContext = Depends(get_auth_context),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> AuthContext:
        await enforce_team_role(resolver, context, team_id, min_role)
        return context

    return dependency
