"""
Admin Schemas

Pydantic models for audit, security, role and compliance administration.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from collabhub.api.audit.types import (
    AuditOutcome,
    IncidentSeverity,
    IncidentStatus,
    IncidentType,
)


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
    success: bool = True


# ==================== Audit Logs ====================


class AuditLogResponse(BaseModel):
    """Single audit log entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[UUID] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    status: AuditOutcome
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogResponse]
    pagination: PaginationResponse


class ActionCount(BaseModel):
    action: str
    count: int


class UserActivityResponse(BaseModel):
    """Recent activity of one user with per-action counts."""

    user_id: UUID
    days: int
    entries: List[AuditLogResponse]
    action_counts: List[ActionCount]


# ==================== Security Incidents ====================


class IncidentResponse(BaseModel):
    """Security incident details."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: IncidentType
    severity: IncidentSeverity
    title: str
    description: str
    status: IncidentStatus
    affected_users: List[UUID] = []
    detected_at: datetime
    resolution: Optional[str] = None
    resolved_by: Optional[UUID] = None
    resolved_at: Optional[datetime] = None


class IncidentListResponse(BaseModel):
    incidents: List[IncidentResponse]
    pagination: PaginationResponse


class ResolveIncidentRequest(BaseModel):
    """Resolve an incident with a resolution note."""

    resolution: str = Field(..., min_length=1, max_length=5000)


class IncidentStatusRequest(BaseModel):
    """Move an incident to another status."""

    status: IncidentStatus
    note: Optional[str] = Field(None, max_length=5000)


# ==================== Roles ====================


class RoleResponse(BaseModel):
    """Role with its assignment count."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    permissions: List[str]
    is_system: bool
    user_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RoleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    description: Optional[str] = Field(None, max_length=500)
    permissions: List[str] = []


class RoleUpdateRequest(BaseModel):
    """Partial role update. Omitted fields are left unchanged."""

    name: Optional[str] = Field(None, min_length=1, max_length=64)
    description: Optional[str] = Field(None, max_length=500)
    permissions: Optional[List[str]] = None


class AssignRoleRequest(BaseModel):
    role_name: str = Field(..., min_length=1, max_length=64)
    expires_at: Optional[datetime] = None


class RoleAssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    role_id: UUID
    granted_by: Optional[UUID] = None
    granted_at: datetime
    expires_at: Optional[datetime] = None


class InitRolesResponse(BaseModel):
    message: str
    roles: List[str]


# ==================== System ====================


class CleanupRequest(BaseModel):
    retention_days: Optional[int] = Field(None, ge=1, le=3650)


class CleanupResponse(BaseModel):
    message: str
    deleted_count: int


# ==================== Compliance ====================


class ComplianceReportResponse(BaseModel):
    """Activity and incident counts for a reporting period."""

    report_type: str
    period: Dict[str, datetime]
    generated_at: datetime
    metrics: Dict[str, int]
