"""
CollabHub - Audit & Incident Types

Action identifiers, outcomes, incident enumerations and the event /
candidate structures that flow through the audit pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Sequence
from uuid import UUID


# ============================================================
# Audit actions
# ============================================================


class AuditAction(str, Enum):
    """Well-known audit action identifiers."""

    # Authentication
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    LOGIN_FAILED = "LOGIN_FAILED"
    MFA_ENABLED = "MFA_ENABLED"
    MFA_DISABLED = "MFA_DISABLED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_RESET = "PASSWORD_RESET"

    # User management
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    USER_DEACTIVATED = "USER_DEACTIVATED"
    USER_REACTIVATED = "USER_REACTIVATED"

    # Role management
    ROLE_ASSIGNED = "ROLE_ASSIGNED"
    ROLE_REVOKED = "ROLE_REVOKED"
    ROLE_CREATED = "ROLE_CREATED"
    ROLE_UPDATED = "ROLE_UPDATED"
    ROLE_DELETED = "ROLE_DELETED"

    # Team management
    TEAM_CREATED = "TEAM_CREATED"
    TEAM_UPDATED = "TEAM_UPDATED"
    TEAM_DELETED = "TEAM_DELETED"
    TEAM_MEMBER_ADDED = "TEAM_MEMBER_ADDED"
    TEAM_MEMBER_UPDATED = "TEAM_MEMBER_UPDATED"
    TEAM_MEMBER_REMOVED = "TEAM_MEMBER_REMOVED"

    # Project management
    PROJECT_CREATED = "PROJECT_CREATED"
    PROJECT_UPDATED = "PROJECT_UPDATED"
    PROJECT_DELETED = "PROJECT_DELETED"
    PROJECT_ANALYZED = "PROJECT_ANALYZED"

    # Document management
    DOCUMENT_CREATED = "DOCUMENT_CREATED"
    DOCUMENT_UPDATED = "DOCUMENT_UPDATED"
    DOCUMENT_DELETED = "DOCUMENT_DELETED"
    DOCUMENT_EXPORTED = "DOCUMENT_EXPORTED"
    DOCUMENT_SYNCED = "DOCUMENT_SYNCED"

    # GitHub integration
    GITHUB_CONNECTED = "GITHUB_CONNECTED"
    GITHUB_DISCONNECTED = "GITHUB_DISCONNECTED"
    GITHUB_SYNCED = "GITHUB_SYNCED"

    # AI features
    AI_ANALYSIS_REQUESTED = "AI_ANALYSIS_REQUESTED"
    AI_SUGGESTION_VIEWED = "AI_SUGGESTION_VIEWED"

    # Data access
    DATA_EXPORTED = "DATA_EXPORTED"
    DATA_ACCESSED = "DATA_ACCESSED"
    SENSITIVE_DATA_ACCESSED = "SENSITIVE_DATA_ACCESSED"

    # Security events
    SECURITY_INCIDENT_CREATED = "SECURITY_INCIDENT_CREATED"
    SECURITY_INCIDENT_UPDATED = "SECURITY_INCIDENT_UPDATED"
    SECURITY_INCIDENT_RESOLVED = "SECURITY_INCIDENT_RESOLVED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    ACCESS_DENIED = "ACCESS_DENIED"

    # Compliance
    GDPR_EXPORT_REQUESTED = "GDPR_EXPORT_REQUESTED"
    GDPR_DELETE_REQUESTED = "GDPR_DELETE_REQUESTED"
    COMPLIANCE_REPORT_GENERATED = "COMPLIANCE_REPORT_GENERATED"


class AuditOutcome(str, Enum):
    """Result of an audited action."""

    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    FAILURE = "FAILURE"


# ============================================================
# Security incidents
# ============================================================


class IncidentType(str, Enum):
    """Closed set of incident categories."""

    BRUTE_FORCE = "BRUTE_FORCE"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    DATA_EXFILTRATION = "DATA_EXFILTRATION"
    ACCOUNT_COMPROMISE = "ACCOUNT_COMPROMISE"
    POLICY_VIOLATION = "POLICY_VIOLATION"


class IncidentSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class IncidentStatus(str, Enum):
    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    FALSE_POSITIVE = "FALSE_POSITIVE"


# Statuses an incident can move to from each status. RESOLVED and
# FALSE_POSITIVE are terminal.
INCIDENT_TRANSITIONS: Dict[IncidentStatus, frozenset] = {
    IncidentStatus.OPEN: frozenset({
        IncidentStatus.INVESTIGATING,
        IncidentStatus.RESOLVED,
        IncidentStatus.FALSE_POSITIVE,
    }),
    IncidentStatus.INVESTIGATING: frozenset({IncidentStatus.RESOLVED}),
    IncidentStatus.RESOLVED: frozenset(),
    IncidentStatus.FALSE_POSITIVE: frozenset(),
}

ACTIVE_INCIDENT_STATUSES = (IncidentStatus.OPEN, IncidentStatus.INVESTIGATING)


def can_transition(current: IncidentStatus, target: IncidentStatus) -> bool:
    """Check whether the incident state machine permits a status change."""
    return target in INCIDENT_TRANSITIONS[current]


# ============================================================
# Pipeline structures
# ============================================================


@dataclass
class AuditEvent:
    """Structured activity event handed to the audit recorder."""

    action: str
    resource: str
    user_id: Optional[UUID] = None
    resource_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    status: AuditOutcome = AuditOutcome.SUCCESS
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    occurred_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.action = str(getattr(self.action, "value", self.action))
        self.status = AuditOutcome(self.status)

    @property
    def target(self) -> str:
        """Resource path used in log lines."""
        if self.resource_id:
            return f"{self.resource}/{self.resource_id}"
        return self.resource

    @classmethod
    def by(cls, context: Any, action: Any, resource: str, **kwargs: Any) -> "AuditEvent":
        """
        Build an event attributed to an authenticated request context.

        ``context`` is anything exposing ``actor_id``, ``ip_address`` and
        ``user_agent`` (an ``AuthContext``), or None for system events.
        """
        if context is not None:
            kwargs.setdefault("user_id", context.actor_id)
            kwargs.setdefault("ip_address", context.ip_address)
            kwargs.setdefault("user_agent", context.user_agent)
        if kwargs.get("resource_id") is not None:
            kwargs["resource_id"] = str(kwargs["resource_id"])
        return cls(action=action, resource=resource, **kwargs)


@dataclass
class IncidentCandidate:
    """A detection that should become (or merge into) an incident."""

    type: IncidentType
    severity: IncidentSeverity
    title: str
    description: str
    affected_users: Sequence[UUID]
