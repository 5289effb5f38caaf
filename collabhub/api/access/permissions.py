"""
CollabHub - Permission Catalog

Closed set of permission identifiers, the default system roles and the
fixed team-role ladder. This is the authoritative source for which
permission identifiers exist; it never changes at runtime.
"""

from enum import Enum, IntEnum
from typing import Dict, FrozenSet, Iterable, List, Set

from collabhub.api.errors import InvalidPermissionError


# ============================================================
# Permissions
# ============================================================


class Permission(str, Enum):
    """All permissions in the system."""

    # User management
    USERS_READ = "users:read"
    USERS_WRITE = "users:write"
    USERS_DELETE = "users:delete"
    USERS_MANAGE_ROLES = "users:manage_roles"

    # Team management
    TEAMS_READ = "teams:read"
    TEAMS_WRITE = "teams:write"
    TEAMS_DELETE = "teams:delete"
    TEAMS_MANAGE_MEMBERS = "teams:manage_members"

    # Project management
    PROJECTS_READ = "projects:read"
    PROJECTS_WRITE = "projects:write"
    PROJECTS_DELETE = "projects:delete"
    PROJECTS_MANAGE = "projects:manage"

    # Document management
    DOCUMENTS_READ = "documents:read"
    DOCUMENTS_WRITE = "documents:write"
    DOCUMENTS_DELETE = "documents:delete"
    DOCUMENTS_EXPORT = "documents:export"

    # GitHub integration
    GITHUB_READ = "github:read"
    GITHUB_WRITE = "github:write"
    GITHUB_SYNC = "github:sync"

    # AI features
    AI_ANALYZE = "ai:analyze"
    AI_VIEW_SUGGESTIONS = "ai:view_suggestions"

    # HR features
    HR_VIEW_ALL = "hr:view_all"
    HR_SUGGESTIONS = "hr:suggestions"
    HR_REPORTS = "hr:reports"

    # Administration
    ADMIN_DASHBOARD = "admin:dashboard"
    ADMIN_AUDIT_LOGS = "admin:audit_logs"
    ADMIN_SECURITY = "admin:security"
    ADMIN_COMPLIANCE = "admin:compliance"
    ADMIN_SYSTEM = "admin:system"

    # Compliance
    COMPLIANCE_VIEW = "compliance:view"
    COMPLIANCE_MANAGE = "compliance:manage"
    COMPLIANCE_EXPORT = "compliance:export"


PERMISSION_DESCRIPTIONS: Dict[Permission, str] = {
    Permission.USERS_READ: "View user profiles",
    Permission.USERS_WRITE: "Create and edit users",
    Permission.USERS_DELETE: "Delete users",
    Permission.USERS_MANAGE_ROLES: "Assign and revoke roles",
    Permission.TEAMS_READ: "View teams",
    Permission.TEAMS_WRITE: "Create and edit teams",
    Permission.TEAMS_DELETE: "Delete teams",
    Permission.TEAMS_MANAGE_MEMBERS: "Add/remove team members",
    Permission.PROJECTS_READ: "View projects",
    Permission.PROJECTS_WRITE: "Create and edit projects",
    Permission.PROJECTS_DELETE: "Delete projects",
    Permission.PROJECTS_MANAGE: "Full project management",
    Permission.DOCUMENTS_READ: "View documents",
    Permission.DOCUMENTS_WRITE: "Create and edit documents",
    Permission.DOCUMENTS_DELETE: "Delete documents",
    Permission.DOCUMENTS_EXPORT: "Export documents",
    Permission.GITHUB_READ: "View GitHub profiles and repos",
    Permission.GITHUB_WRITE: "Connect GitHub accounts",
    Permission.GITHUB_SYNC: "Sync GitHub data",
    Permission.AI_ANALYZE: "Request AI analysis",
    Permission.AI_VIEW_SUGGESTIONS: "View AI suggestions",
    Permission.HR_VIEW_ALL: "View all team data",
    Permission.HR_SUGGESTIONS: "Access HR AI suggestions",
    Permission.HR_REPORTS: "Generate HR reports",
    Permission.ADMIN_DASHBOARD: "Access admin dashboard",
    Permission.ADMIN_AUDIT_LOGS: "View audit logs",
    Permission.ADMIN_SECURITY: "Manage security settings",
    Permission.ADMIN_COMPLIANCE: "Manage compliance settings",
    Permission.ADMIN_SYSTEM: "System administration",
    Permission.COMPLIANCE_VIEW: "View compliance reports",
    Permission.COMPLIANCE_MANAGE: "Manage compliance policies",
    Permission.COMPLIANCE_EXPORT: "Export compliance data",
}


CATALOG: FrozenSet[str] = frozenset(p.value for p in Permission)


def is_known_permission(identifier: str) -> bool:
    """Check whether an identifier exists in the catalog."""
    return identifier in CATALOG


def validate_permissions(identifiers: Iterable[str]) -> List[str]:
    """
    Validate permission identifiers against the catalog.

    Returns:
        Deduplicated identifiers in catalog order

    Raises:
        InvalidPermissionError: If any identifier is unknown
    """
    requested = [str(getattr(i, "value", i)) for i in identifiers]
    invalid = [i for i in requested if i not in CATALOG]
    if invalid:
        raise InvalidPermissionError(invalid)

    wanted = set(requested)
    return [p.value for p in Permission if p.value in wanted]


def available_permissions() -> Dict[str, str]:
    """Permission identifier -> description, for role administration UIs."""
    return {p.value: PERMISSION_DESCRIPTIONS[p] for p in Permission}


# ============================================================
# Default (system) roles
# ============================================================


DEFAULT_ROLES: Dict[str, Dict[str, object]] = {
    "admin": {
        "description": "Full system administrator with all permissions",
        "permissions": [p.value for p in Permission],
    },
    "hr_manager": {
        "description": "HR manager with access to all HR features",
        "permissions": [
            "users:read", "teams:read", "projects:read", "documents:read",
            "github:read", "ai:view_suggestions", "hr:view_all", "hr:suggestions",
            "hr:reports", "compliance:view",
        ],
    },
    "team_lead": {
        "description": "Team leader with team management capabilities",
        "permissions": [
            "users:read", "teams:read", "teams:write", "teams:manage_members",
            "projects:read", "projects:write", "projects:manage",
            "documents:read", "documents:write", "github:read", "github:write",
            "github:sync", "ai:analyze", "ai:view_suggestions",
        ],
    },
    "member": {
        "description": "Standard team member",
        "permissions": [
            "users:read", "teams:read", "projects:read", "projects:write",
            "documents:read", "documents:write", "github:read", "github:write",
            "ai:analyze",
        ],
    },
    "viewer": {
        "description": "Read-only access to team data",
        "permissions": [
            "users:read", "teams:read", "projects:read", "documents:read",
            "github:read",
        ],
    },
}


# ============================================================
# Team roles
# ============================================================


class TeamRole(IntEnum):
    """Team-scoped role ladder, ordered VIEWER < MEMBER < LEAD < OWNER."""

    VIEWER = 1
    MEMBER = 2
    LEAD = 3
    OWNER = 4


TEAM_ROLE_PERMISSIONS: Dict[TeamRole, Set[Permission]] = {
    TeamRole.OWNER: {
        Permission.TEAMS_WRITE,
        Permission.TEAMS_MANAGE_MEMBERS,
        Permission.PROJECTS_MANAGE,
        Permission.DOCUMENTS_WRITE,
    },
    TeamRole.LEAD: {
        Permission.TEAMS_MANAGE_MEMBERS,
        Permission.PROJECTS_WRITE,
        Permission.DOCUMENTS_WRITE,
    },
    TeamRole.MEMBER: {
        Permission.PROJECTS_READ,
        Permission.DOCUMENTS_READ,
        Permission.DOCUMENTS_WRITE,
    },
    TeamRole.VIEWER: {
        Permission.PROJECTS_READ,
        Permission.DOCUMENTS_READ,
    },
}


def team_role_implies(role: TeamRole, permission: str) -> bool:
    """Check whether a team role implies a permission within its team."""
    return permission in {p.value for p in TEAM_ROLE_PERMISSIONS.get(role, set())}
