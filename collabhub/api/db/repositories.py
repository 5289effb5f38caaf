"""
SQLAlchemy Repositories

Async SQLAlchemy implementations of the repository ports, plus the
Unit of Work that bundles them over a single ``AsyncSession``.

All time-window comparisons are pushed into SQL so that stored values are
never compared against Python datetimes after loading.
"""

import logging
import zlib
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import Select, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collabhub.api.access.permissions import TeamRole
from collabhub.api.audit.types import ACTIVE_INCIDENT_STATUSES, IncidentType
from collabhub.api.db.models import (
    AuditLogEntry,
    Role,
    RoleAssignment,
    SecurityIncident,
    SecurityIncidentActor,
    TeamMembership,
    User,
)
from collabhub.api.db.ports import AuditLogFilter, IncidentFilter
from collabhub.api.errors import ConflictError

logger = logging.getLogger(__name__)


async def _flush_or_conflict(session: AsyncSession, message: str, code: str) -> None:
    """Flush pending rows, turning a uniqueness violation into ConflictError."""
    try:
        await session.flush()
    except IntegrityError as e:
        await session.rollback()
        logger.info(f"Uniqueness violation ({code}): {e.orig}")
        raise ConflictError(message, code=code) from e


def _paginate(stmt: Select, page: int, limit: int) -> Select:
    return stmt.offset((page - 1) * limit).limit(limit)


# ============================================================
# Users
# ============================================================


class SqlUserRepository:
    """User repository implementation."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        return await self._session.get(User, user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self._session.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    async def add(self, user: User) -> User:
        self._session.add(user)
        await _flush_or_conflict(self._session, "Email already registered", "EMAIL_TAKEN")
        return user


# ============================================================
# Roles and assignments
# ============================================================


class SqlRoleRepository:
    """Role repository implementation."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, role_id: UUID) -> Optional[Role]:
        return await self._session.get(Role, role_id)

    async def get_by_name(self, name: str) -> Optional[Role]:
        result = await self._session.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()

    async def list_with_counts(self) -> List[Tuple[Role, int]]:
        """All roles ordered by name, each with its assignment count."""
        stmt = (
            select(Role, func.count(RoleAssignment.id))
            .outerjoin(RoleAssignment, RoleAssignment.role_id == Role.id)
            .group_by(Role.id)
            .order_by(Role.name)
        )
        result = await self._session.execute(stmt)
        return [(role, count) for role, count in result.all()]

    async def add(self, role: Role) -> Role:
        self._session.add(role)
        await _flush_or_conflict(
            self._session, f"Role '{role.name}' already exists", "ROLE_EXISTS"
        )
        return role

    async def save(self, role: Role) -> Role:
        await _flush_or_conflict(
            self._session, f"Role '{role.name}' already exists", "ROLE_EXISTS"
        )
        return role

    async def delete(self, role: Role) -> None:
        await self._session.delete(role)
        await self._session.flush()


class SqlRoleAssignmentRepository:
    """Role assignment repository implementation."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _not_expired(now: datetime):
        return or_(RoleAssignment.expires_at.is_(None), RoleAssignment.expires_at > now)

    async def list_active(self, user_id: UUID, now: datetime) -> List[RoleAssignment]:
        """Non-expired assignments for an actor, roles eagerly loaded."""
        stmt = select(RoleAssignment).where(
            RoleAssignment.user_id == user_id,
            self._not_expired(now),
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def has_active_role(self, user_id: UUID, role_name: str, now: datetime) -> bool:
        stmt = (
            select(func.count())
            .select_from(RoleAssignment)
            .join(Role, Role.id == RoleAssignment.role_id)
            .where(
                RoleAssignment.user_id == user_id,
                Role.name == role_name,
                self._not_expired(now),
            )
        )
        return (await self._session.scalar(stmt) or 0) > 0

    async def get(self, user_id: UUID, role_id: UUID) -> Optional[RoleAssignment]:
        result = await self._session.execute(
            select(RoleAssignment).where(
                RoleAssignment.user_id == user_id,
                RoleAssignment.role_id == role_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, assignment: RoleAssignment) -> RoleAssignment:
        self._session.add(assignment)
        await _flush_or_conflict(
            self._session, "User already has this role", "ROLE_ALREADY_ASSIGNED"
        )
        return assignment

    async def renew_expired(
        self,
        user_id: UUID,
        role_id: UUID,
        granted_by: Optional[UUID],
        granted_at: datetime,
        expires_at: Optional[datetime],
    ) -> bool:
        """
        Re-grant a lapsed assignment in place.

        The row is only touched while it is still expired, so two racing
        re-grants cannot both succeed.
        """
        stmt = (
            update(RoleAssignment)
            .where(
                RoleAssignment.user_id == user_id,
                RoleAssignment.role_id == role_id,
                RoleAssignment.expires_at.is_not(None),
                RoleAssignment.expires_at <= granted_at,
            )
            .values(granted_by=granted_by, granted_at=granted_at, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def delete(self, user_id: UUID, role_id: UUID) -> int:
        result = await self._session.execute(
            delete(RoleAssignment).where(
                RoleAssignment.user_id == user_id,
                RoleAssignment.role_id == role_id,
            )
        )
        return result.rowcount

    async def delete_for_role(self, role_id: UUID) -> int:
        result = await self._session.execute(
            delete(RoleAssignment).where(RoleAssignment.role_id == role_id)
        )
        return result.rowcount


# ============================================================
# Team memberships
# ============================================================


class SqlTeamMembershipRepository:
    """Team membership repository implementation."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_active(self, team_id: UUID, user_id: UUID) -> Optional[TeamMembership]:
        result = await self._session.execute(
            select(TeamMembership).where(
                TeamMembership.team_id == team_id,
                TeamMembership.user_id == user_id,
                TeamMembership.left_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def list_active(self, team_id: UUID) -> List[TeamMembership]:
        result = await self._session.execute(
            select(TeamMembership)
            .where(TeamMembership.team_id == team_id, TeamMembership.left_at.is_(None))
            .order_by(TeamMembership.joined_at)
        )
        return list(result.scalars().all())

    async def count_active_owners(self, team_id: UUID, lock: bool = False) -> int:
        """Count active OWNER rows; with ``lock`` the rows are held FOR UPDATE."""
        stmt = select(TeamMembership.id).where(
            TeamMembership.team_id == team_id,
            TeamMembership.role == TeamRole.OWNER,
            TeamMembership.left_at.is_(None),
        )
        if lock:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return len(result.scalars().all())

    async def add(self, membership: TeamMembership) -> TeamMembership:
        self._session.add(membership)
        await _flush_or_conflict(
            self._session, "User is already a member of this team", "ALREADY_MEMBER"
        )
        return membership


# ============================================================
# Audit log
# ============================================================


class SqlAuditLogRepository:
    """Audit log repository implementation."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, entry: AuditLogEntry) -> AuditLogEntry:
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def count_actions_since(self, user_id: UUID, action: str, since: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(AuditLogEntry)
            .where(
                AuditLogEntry.user_id == user_id,
                AuditLogEntry.action == action,
                AuditLogEntry.created_at >= since,
            )
        )
        return await self._session.scalar(stmt) or 0

    async def count_distinct_origins_since(self, user_id: UUID, since: datetime) -> int:
        stmt = select(func.count(func.distinct(AuditLogEntry.ip_address))).where(
            AuditLogEntry.user_id == user_id,
            AuditLogEntry.ip_address.is_not(None),
            AuditLogEntry.created_at >= since,
        )
        return await self._session.scalar(stmt) or 0

    async def count_action_between(self, action: str, start: datetime, end: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(AuditLogEntry)
            .where(
                AuditLogEntry.action == action,
                AuditLogEntry.created_at >= start,
                AuditLogEntry.created_at <= end,
            )
        )
        return await self._session.scalar(stmt) or 0

    @staticmethod
    def _conditions(filters: AuditLogFilter) -> list:
        conditions = []
        if filters.user_id is not None:
            conditions.append(AuditLogEntry.user_id == filters.user_id)
        if filters.action:
            conditions.append(AuditLogEntry.action == filters.action)
        if filters.resource:
            conditions.append(AuditLogEntry.resource == filters.resource)
        if filters.status is not None:
            conditions.append(AuditLogEntry.status == filters.status)
        if filters.start_date is not None:
            conditions.append(AuditLogEntry.created_at >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(AuditLogEntry.created_at <= filters.end_date)
        return conditions

    async def query(
        self, filters: AuditLogFilter, page: int, limit: int
    ) -> Tuple[List[AuditLogEntry], int]:
        """Filtered page of entries, newest first, insertion order breaking ties."""
        conditions = self._conditions(filters)

        total = await self._session.scalar(
            select(func.count()).select_from(AuditLogEntry).where(*conditions)
        )
        stmt = (
            select(AuditLogEntry)
            .where(*conditions)
            .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        )
        result = await self._session.execute(_paginate(stmt, page, limit))
        return list(result.scalars().all()), total or 0

    async def recent_for_user(
        self, user_id: UUID, since: datetime, limit: int
    ) -> List[AuditLogEntry]:
        stmt = (
            select(AuditLogEntry)
            .where(AuditLogEntry.user_id == user_id, AuditLogEntry.created_at >= since)
            .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def action_counts_for_user(
        self, user_id: UUID, since: datetime
    ) -> List[Tuple[str, int]]:
        count = func.count(AuditLogEntry.id)
        stmt = (
            select(AuditLogEntry.action, count)
            .where(AuditLogEntry.user_id == user_id, AuditLogEntry.created_at >= since)
            .group_by(AuditLogEntry.action)
            .order_by(count.desc(), AuditLogEntry.action)
        )
        result = await self._session.execute(stmt)
        return [(action, n) for action, n in result.all()]

    async def delete_older_than(self, cutoff: datetime) -> int:
        result = await self._session.execute(
            delete(AuditLogEntry)
            .where(AuditLogEntry.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


# ============================================================
# Security incidents
# ============================================================


class SqlSecurityIncidentRepository:
    """Security incident repository implementation."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def lock_type(self, type: IncidentType) -> None:
        """
        Serialize create-or-merge for one incident type until the transaction
        ends. Uses a transaction-scoped advisory lock on PostgreSQL; other
        backends rely on the caller's in-process lock.
        """
        if self._session.bind.dialect.name != "postgresql":
            return
        key = zlib.crc32(f"security_incident:{type.value}".encode())
        await self._session.execute(select(func.pg_advisory_xact_lock(key)))

    async def find_active_match(
        self, type: IncidentType, user_ids: Sequence[UUID], since: datetime
    ) -> Optional[SecurityIncident]:
        """
        Most recent OPEN/INVESTIGATING incident of ``type`` detected since
        ``since`` that shares an affected actor with ``user_ids``.

        The matched row is locked FOR UPDATE on backends that support it.
        """
        if not user_ids:
            return None

        shares_actor = (
            select(SecurityIncidentActor.incident_id)
            .where(SecurityIncidentActor.user_id.in_(list(user_ids)))
        )
        stmt = (
            select(SecurityIncident)
            .where(
                SecurityIncident.type == type,
                SecurityIncident.status.in_(ACTIVE_INCIDENT_STATUSES),
                SecurityIncident.detected_at >= since,
                SecurityIncident.id.in_(shares_actor),
            )
            .order_by(SecurityIncident.detected_at.desc())
            .limit(1)
            .with_for_update()
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, incident_id: UUID) -> Optional[SecurityIncident]:
        return await self._session.get(SecurityIncident, incident_id)

    async def add(self, incident: SecurityIncident) -> SecurityIncident:
        self._session.add(incident)
        await self._session.flush()
        return incident

    async def query(
        self, filters: IncidentFilter, page: int, limit: int
    ) -> Tuple[List[SecurityIncident], int]:
        conditions = []
        if filters.type is not None:
            conditions.append(SecurityIncident.type == filters.type)
        if filters.severity is not None:
            conditions.append(SecurityIncident.severity == filters.severity)
        if filters.status is not None:
            conditions.append(SecurityIncident.status == filters.status)

        total = await self._session.scalar(
            select(func.count()).select_from(SecurityIncident).where(*conditions)
        )
        stmt = (
            select(SecurityIncident)
            .where(*conditions)
            .order_by(SecurityIncident.detected_at.desc(), SecurityIncident.id)
        )
        result = await self._session.execute(_paginate(stmt, page, limit))
        return list(result.scalars().all()), total or 0

    async def count_detected_between(self, start: datetime, end: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(SecurityIncident)
            .where(SecurityIncident.detected_at >= start, SecurityIncident.detected_at <= end)
        )
        return await self._session.scalar(stmt) or 0


# ============================================================
# Unit of Work
# ============================================================


class SqlUnitOfWork:
    """SQLAlchemy Unit of Work - one session, one transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._users = SqlUserRepository(session)
        self._roles = SqlRoleRepository(session)
        self._assignments = SqlRoleAssignmentRepository(session)
        self._memberships = SqlTeamMembershipRepository(session)
        self._audit_log = SqlAuditLogRepository(session)
        self._incidents = SqlSecurityIncidentRepository(session)

    @property
    def users(self) -> SqlUserRepository:
        return self._users

    @property
    def roles(self) -> SqlRoleRepository:
        return self._roles

    @property
    def assignments(self) -> SqlRoleAssignmentRepository:
        return self._assignments

    @property
    def memberships(self) -> SqlTeamMembershipRepository:
        return self._memberships

    @property
    def audit_log(self) -> SqlAuditLogRepository:
        return self._audit_log

    @property
    def incidents(self) -> SqlSecurityIncidentRepository:
        return self._incidents

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


def create_uow_factory(session_maker: async_sessionmaker):
    """Create a UnitOfWork factory (async context manager)."""

    @asynccontextmanager
    async def factory() -> AsyncIterator[SqlUnitOfWork]:
        async with session_maker() as session:
            uow = SqlUnitOfWork(session)
            try:
                yield uow
                await uow.commit()
            except BaseException:
                await uow.rollback()
                raise

    return factory
