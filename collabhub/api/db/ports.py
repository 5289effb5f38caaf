"""
Repository Ports

Persistence interfaces the access-control and audit services depend on.
The SQLAlchemy implementations live in ``collabhub.api.db.repositories``;
tests may substitute any object satisfying these protocols.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import (
    AsyncContextManager,
    Callable,
    Generic,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
)
from uuid import UUID

from collabhub.api.audit.types import AuditOutcome, IncidentSeverity, IncidentStatus, IncidentType
from collabhub.api.db.models import (
    AuditLogEntry,
    Role,
    RoleAssignment,
    SecurityIncident,
    TeamMembership,
    User,
)

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """One page of a paginated query."""

    items: List[T]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


@dataclass
class AuditLogFilter:
    """Filters for audit log queries."""

    user_id: Optional[UUID] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    status: Optional[AuditOutcome] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass
class IncidentFilter:
    """Filters for incident queries."""

    type: Optional[IncidentType] = None
    severity: Optional[IncidentSeverity] = None
    status: Optional[IncidentStatus] = None


class UserRepository(Protocol):
    """Port for actor accounts."""

    async def get_by_id(self, user_id: UUID) -> Optional[User]: ...

    async def get_by_email(self, email: str) -> Optional[User]: ...

    async def add(self, user: User) -> User: ...


class RoleRepository(Protocol):
    """Port for role persistence."""

    async def get_by_id(self, role_id: UUID) -> Optional[Role]: ...

    async def get_by_name(self, name: str) -> Optional[Role]: ...

    async def list_with_counts(self) -> List[Tuple[Role, int]]: ...

    async def add(self, role: Role) -> Role: ...

    async def save(self, role: Role) -> Role: ...

    async def delete(self, role: Role) -> None: ...


class RoleAssignmentRepository(Protocol):
    """Port for the actor/role assignment ledger."""

    async def list_active(self, user_id: UUID, now: datetime) -> List[RoleAssignment]: ...

    async def has_active_role(self, user_id: UUID, role_name: str, now: datetime) -> bool: ...

    async def get(self, user_id: UUID, role_id: UUID) -> Optional[RoleAssignment]: ...

    async def add(self, assignment: RoleAssignment) -> RoleAssignment: ...

    async def renew_expired(
        self,
        user_id: UUID,
        role_id: UUID,
        granted_by: Optional[UUID],
        granted_at: datetime,
        expires_at: Optional[datetime],
    ) -> bool: ...

    async def delete(self, user_id: UUID, role_id: UUID) -> int: ...

    async def delete_for_role(self, role_id: UUID) -> int: ...


class TeamMembershipRepository(Protocol):
    """Port for team memberships."""

    async def get_active(self, team_id: UUID, user_id: UUID) -> Optional[TeamMembership]: ...

    async def list_active(self, team_id: UUID) -> List[TeamMembership]: ...

    async def count_active_owners(self, team_id: UUID, lock: bool = False) -> int: ...

    async def add(self, membership: TeamMembership) -> TeamMembership: ...


class AuditLogRepository(Protocol):
    """Port for the append-only audit log."""

    async def add(self, entry: AuditLogEntry) -> AuditLogEntry: ...

    async def count_actions_since(self, user_id: UUID, action: str, since: datetime) -> int: ...

    async def count_distinct_origins_since(self, user_id: UUID, since: datetime) -> int: ...

    async def count_action_between(self, action: str, start: datetime, end: datetime) -> int: ...

    async def query(
        self, filters: AuditLogFilter, page: int, limit: int
    ) -> Tuple[List[AuditLogEntry], int]: ...

    async def recent_for_user(
        self, user_id: UUID, since: datetime, limit: int
    ) -> List[AuditLogEntry]: ...

    async def action_counts_for_user(
        self, user_id: UUID, since: datetime
    ) -> List[Tuple[str, int]]: ...

    async def delete_older_than(self, cutoff: datetime) -> int: ...


class SecurityIncidentRepository(Protocol):
    """Port for security incidents."""

    async def lock_type(self, type: IncidentType) -> None: ...

    async def find_active_match(
        self, type: IncidentType, user_ids: Sequence[UUID], since: datetime
    ) -> Optional[SecurityIncident]: ...

    async def get(self, incident_id: UUID) -> Optional[SecurityIncident]: ...

    async def add(self, incident: SecurityIncident) -> SecurityIncident: ...

    async def query(
        self, filters: IncidentFilter, page: int, limit: int
    ) -> Tuple[List[SecurityIncident], int]: ...

    async def count_detected_between(self, start: datetime, end: datetime) -> int: ...


class UnitOfWork(Protocol):
    """Unit of Work - one transaction, one set of repositories."""

    @property
    def users(self) -> UserRepository: ...

    @property
    def roles(self) -> RoleRepository: ...

    @property
    def assignments(self) -> RoleAssignmentRepository: ...

    @property
    def memberships(self) -> TeamMembershipRepository: ...

    @property
    def audit_log(self) -> AuditLogRepository: ...

    @property
    def incidents(self) -> SecurityIncidentRepository: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


# Opens a fresh UnitOfWork that commits on clean exit and rolls back on error
UnitOfWorkFactory = Callable[[], AsyncContextManager[UnitOfWork]]
