"""Database module."""

from collabhub.api.db.session import get_db, init_db, close_db, get_session_maker, get_uow_factory
from collabhub.api.db.models import (
    Base,
    User,
    Role,
    RoleAssignment,
    TeamMembership,
    AuditLogEntry,
    SecurityIncident,
    SecurityIncidentActor,
)

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "get_session_maker",
    "get_uow_factory",
    "Base",
    "User",
    "Role",
    "RoleAssignment",
    "TeamMembership",
    "AuditLogEntry",
    "SecurityIncident",
    "SecurityIncidentActor",
]
