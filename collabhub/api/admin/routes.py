"""
Admin Routes

API endpoints for audit logs, security incidents, role management and
compliance reporting. Every endpoint is gated by a permission.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from collabhub.api.access.permissions import Permission
from collabhub.api.access.rbac import AuthContext
from collabhub.api.access.roles import RoleService
from collabhub.api.admin.schemas import (
    AssignRoleRequest,
    AuditLogListResponse,
    AuditLogResponse,
    CleanupRequest,
    CleanupResponse,
    ComplianceReportResponse,
    IncidentListResponse,
    IncidentResponse,
    IncidentStatusRequest,
    InitRolesResponse,
    MessageResponse,
    ResolveIncidentRequest,
    RoleAssignmentResponse,
    RoleCreateRequest,
    RoleResponse,
    RoleUpdateRequest,
    UserActivityResponse,
)
from collabhub.api.audit.incidents import IncidentManager
from collabhub.api.audit.recorder import AuditRecorder
from collabhub.api.audit.service import AuditService
from collabhub.api.audit.types import (
    AuditOutcome,
    IncidentSeverity,
    IncidentStatus,
    IncidentType,
)
from collabhub.api.config import settings
from collabhub.api.db.models import Role, utcnow
from collabhub.api.db.ports import AuditLogFilter, IncidentFilter
from collabhub.api.db.repositories import SqlUnitOfWork
from collabhub.api.dependencies import (
    get_incident_manager,
    get_recorder,
    get_uow,
    require_permission,
)
from collabhub.api.services.background_tasks import (
    BackgroundWorkerManager,
    get_worker_manager,
)


router = APIRouter()


def get_role_service(
    uow: SqlUnitOfWork = Depends(get_uow),
    recorder: AuditRecorder = Depends(get_recorder),
) -> RoleService:
    return RoleService(uow, recorder)


def get_audit_service(
    uow: SqlUnitOfWork = Depends(get_uow),
    recorder: AuditRecorder = Depends(get_recorder),
) -> AuditService:
    return AuditService(uow, recorder, retention_days=settings.AUDIT_LOG_RETENTION_DAYS)


def _role_response(role: Role, user_count: int = 0) -> RoleResponse:
    response = RoleResponse.model_validate(role)
    response.user_count = user_count
    return response


# ==================== Audit Logs ====================


@router.get(
    "/audit-logs",
    response_model=AuditLogListResponse,
    summary="Query audit logs",
)
async def list_audit_logs(
    user_id: Optional[UUID] = Query(None),
    action: Optional[str] = Query(None),
    resource: Optional[str] = Query(None),
    outcome: Optional[AuditOutcome] = Query(None, alias="status"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: AuthContext = Depends(require_permission(Permission.ADMIN_AUDIT_LOGS)),
    service: AuditService = Depends(get_audit_service),
) -> AuditLogListResponse:
    """
    Get audit logs, newest first.

    Filter by user, action, resource, outcome and a created-at range.
    """
    result = await service.get_logs(
        AuditLogFilter(
            user_id=user_id,
            action=action,
            resource=resource,
            status=outcome,
            start_date=start_date,
            end_date=end_date,
        ),
        page=page,
        limit=limit,
    )
    return AuditLogListResponse(
        logs=[AuditLogResponse.model_validate(e) for e in result.items],
        pagination=result.pagination(),
    )


@router.get(
    "/audit-logs/user/{user_id}",
    response_model=UserActivityResponse,
    summary="Get user activity",
)
async def get_user_activity(
    user_id: UUID,
    days: int = Query(30, ge=1, le=365),
    admin: AuthContext = Depends(require_permission(Permission.ADMIN_AUDIT_LOGS)),
    service: AuditService = Depends(get_audit_service),
) -> UserActivityResponse:
    """Recent activity of one user with a per-action summary."""
    activity = await service.get_user_activity(user_id, days)
    return UserActivityResponse(
        user_id=user_id,
        days=days,
        entries=[AuditLogResponse.model_validate(e) for e in activity["entries"]],
        action_counts=activity["action_counts"],
    )


# ==================== Security Incidents ====================


@router.get(
    "/security/incidents",
    response_model=IncidentListResponse,
    summary="List security incidents",
)
async def list_incidents(
    type: Optional[IncidentType] = Query(None),
    severity: Optional[IncidentSeverity] = Query(None),
    incident_status: Optional[IncidentStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: AuthContext = Depends(require_permission(Permission.ADMIN_SECURITY)),
    incidents: IncidentManager = Depends(get_incident_manager),
) -> IncidentListResponse:
    result = await incidents.list_incidents(
        IncidentFilter(type=type, severity=severity, status=incident_status),
        page=page,
        limit=limit,
    )
    return IncidentListResponse(
        incidents=[IncidentResponse.model_validate(i) for i in result.items],
        pagination=result.pagination(),
    )


@router.put(
    "/security/incidents/{incident_id}/resolve",
    response_model=IncidentResponse,
    summary="Resolve a security incident",
)
async def resolve_incident(
    incident_id: UUID,
    data: ResolveIncidentRequest,
    admin: AuthContext = Depends(require_permission(Permission.ADMIN_SECURITY)),
    incidents: IncidentManager = Depends(get_incident_manager),
) -> IncidentResponse:
    """Mark an incident RESOLVED with a resolution note."""
    incident = await incidents.resolve(incident_id, data.resolution, admin)
    return IncidentResponse.model_validate(incident)


@router.put(
    "/security/incidents/{incident_id}/status",
    response_model=IncidentResponse,
    summary="Change security incident status",
)
async def update_incident_status(
    incident_id: UUID,
    data: IncidentStatusRequest,
    admin: AuthContext = Depends(require_permission(Permission.ADMIN_SECURITY)),
    incidents: IncidentManager = Depends(get_incident_manager),
) -> IncidentResponse:
    """
    Move an incident along OPEN -> INVESTIGATING -> RESOLVED.

    OPEN incidents may also be marked FALSE_POSITIVE. Closed incidents
    cannot be reopened.
    """
    incident = await incidents.transition(incident_id, data.status, admin, data.note)
    return IncidentResponse.model_validate(incident)


# ==================== Role Management ====================


@router.get(
    "/roles",
    response_model=list[RoleResponse],
    summary="List roles",
)
async def list_roles(
    admin: AuthContext = Depends(require_permission(Permission.USERS_MANAGE_ROLES)),
    service: RoleService = Depends(get_role_service),
) -> list[RoleResponse]:
    """All roles with how many users hold each."""
    return [_role_response(role, count) for role, count in await service.list_roles()]


@router.get(
    "/roles/permissions",
    response_model=dict[str, str],
    summary="List available permissions",
)
async def list_permissions(
    admin: AuthContext = Depends(require_permission(Permission.USERS_MANAGE_ROLES)),
    service: RoleService = Depends(get_role_service),
) -> dict[str, str]:
    return service.list_available_permissions()


@router.post(
    "/roles",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a custom role",
)
async def create_role(
    data: RoleCreateRequest,
    admin: AuthContext = Depends(require_permission(Permission.ADMIN_SYSTEM)),
    service: RoleService = Depends(get_role_service),
) -> RoleResponse:
    """
    Create a custom role.

    Every permission must exist in the permission catalog.
    """
    role = await service.create_role(data.name, data.permissions, data.description, actor=admin)
    return _role_response(role)


@router.put(
    "/roles/{role_id}",
    response_model=RoleResponse,
    summary="Update a role",
)
async def update_role(
    role_id: UUID,
    data: RoleUpdateRequest,
    admin: AuthContext = Depends(require_permission(Permission.ADMIN_SYSTEM)),
    service: RoleService = Depends(get_role_service),
) -> RoleResponse:
    role = await service.update_role(
        role_id,
        name=data.name,
        description=data.description,
        permissions=data.permissions,
        actor=admin,
    )
    return _role_response(role)


@router.delete(
    "/roles/{role_id}",
    response_model=MessageResponse,
    summary="Delete a custom role",
)
async def delete_role(
    role_id: UUID,
    admin: AuthContext = Depends(require_permission(Permission.ADMIN_SYSTEM)),
    service: RoleService = Depends(get_role_service),
) -> MessageResponse:
    """Delete a custom role. System roles cannot be deleted."""
    removed = await service.delete_role(role_id, actor=admin)
    return MessageResponse(message=f"Role deleted ({removed} assignments removed)")


@router.post(
    "/users/{user_id}/roles",
    response_model=RoleAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Assign a role to a user",
)
async def assign_role(
    user_id: UUID,
    data: AssignRoleRequest,
    admin: AuthContext = Depends(require_permission(Permission.USERS_MANAGE_ROLES)),
    service: RoleService = Depends(get_role_service),
) -> RoleAssignmentResponse:
    assignment = await service.assign_role(
        user_id, data.role_name, expires_at=data.expires_at, actor=admin
    )
    return RoleAssignmentResponse.model_validate(assignment)


@router.delete(
    "/users/{user_id}/roles/{role_name}",
    response_model=MessageResponse,
    summary="Revoke a role from a user",
)
async def revoke_role(
    user_id: UUID,
    role_name: str,
    admin: AuthContext = Depends(require_permission(Permission.USERS_MANAGE_ROLES)),
    service: RoleService = Depends(get_role_service),
) -> MessageResponse:
    removed = await service.revoke_role(user_id, role_name, actor=admin)
    if not removed:
        return MessageResponse(message="User does not have this role")
    return MessageResponse(message="Role revoked")


# ==================== System ====================


@router.post(
    "/system/init-roles",
    response_model=InitRolesResponse,
    summary="Initialize default roles",
)
async def init_roles(
    admin: AuthContext = Depends(require_permission(Permission.ADMIN_SYSTEM)),
    service: RoleService = Depends(get_role_service),
) -> InitRolesResponse:
    """Create or repair the system roles. Safe to re-run."""
    changed = await service.initialize_default_roles()
    return InitRolesResponse(message="Default roles initialized", roles=changed)


@router.post(
    "/system/cleanup-logs",
    response_model=CleanupResponse,
    summary="Delete audit logs past retention",
)
async def cleanup_logs(
    data: CleanupRequest,
    admin: AuthContext = Depends(require_permission(Permission.ADMIN_SYSTEM)),
    service: AuditService = Depends(get_audit_service),
) -> CleanupResponse:
    removed = await service.cleanup_old_logs(data.retention_days)
    return CleanupResponse(message=f"Deleted {removed} old audit logs", deleted_count=removed)


@router.get(
    "/system/workers",
    response_model=Dict[str, Any],
    summary="Background worker statistics",
)
async def worker_stats(
    admin: AuthContext = Depends(require_permission(Permission.ADMIN_SYSTEM)),
    workers: BackgroundWorkerManager = Depends(get_worker_manager),
) -> Dict[str, Any]:
    """Audit pipeline counters (queue, drops, detector failures, breaker) and retention runs."""
    return workers.get_all_stats()


# ==================== Compliance ====================


@router.get(
    "/compliance/report",
    response_model=ComplianceReportResponse,
    summary="Generate compliance report",
)
async def compliance_report(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    report_type: str = Query("GDPR", max_length=32),
    admin: AuthContext = Depends(
        require_permission(
            Permission.ADMIN_COMPLIANCE, Permission.COMPLIANCE_VIEW, require_all=False
        )
    ),
    service: AuditService = Depends(get_audit_service),
) -> ComplianceReportResponse:
    """Counts for the period; defaults to the last 30 days."""
    end = end_date or utcnow()
    start = start_date or end - timedelta(days=30)
    report = await service.generate_compliance_report(
        start, end, report_type.upper(), actor=admin
    )
    return ComplianceReportResponse(**report)
