"""
CollabHub - Role-Based Access Control (RBAC)

Resolves whether an actor may perform an action, from role assignments
(with expirations) and team-scoped membership roles.
This is the authoritative source for access decisions.

Resolution is fail-closed: a storage error during lookup is logged and
re-raised, so the caller never sees a permissive answer.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set, Union
from uuid import UUID

from collabhub.api.access.permissions import Permission, TeamRole, team_role_implies
from collabhub.api.db.models import Role, utcnow
from collabhub.api.db.ports import RoleAssignmentRepository, TeamMembershipRepository
from collabhub.api.errors import AuthorizationError

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

PermissionLike = Union[str, Permission]


def _ident(permission: PermissionLike) -> str:
    return str(getattr(permission, "value", permission))


# ============================================================
# Authorization Context
# ============================================================


@dataclass
class AuthContext:
    """Authenticated actor attached to a request."""

    actor_id: UUID
    role_names: Set[str] = field(default_factory=set)
    permissions: Set[str] = field(default_factory=set)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


# ============================================================
# Permission Resolver
# ============================================================


class PermissionResolver:
    """
    Answers permission questions for an actor.

    Only non-expired assignments count (``expires_at IS NULL OR
    expires_at > now``). Team checks consult the global result first and
    fall back to the actor's active membership role in that team; there is
    no global deny.
    """

    def __init__(
        self,
        assignments: RoleAssignmentRepository,
        memberships: TeamMembershipRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.assignments = assignments
        self.memberships = memberships
        self.clock = clock

    async def active_roles(self, actor_id: UUID) -> List[Role]:
        """Roles held through non-expired assignments."""
        try:
            assignments = await self.assignments.list_active(actor_id, self.clock())
        except Exception:
            logger.exception(f"Role lookup failed for actor {actor_id}, denying")
            raise
        return [a.role for a in assignments]

    async def effective_permissions(self, actor_id: UUID) -> Set[str]:
        """Union of the permission sets of every active role."""
        permissions: Set[str] = set()
        for role in await self.active_roles(actor_id):
            permissions.update(role.permissions or [])
        return permissions

    async def has_permission(self, actor_id: UUID, permission: PermissionLike) -> bool:
        return _ident(permission) in await self.effective_permissions(actor_id)

    async def has_any_permission(
        self, actor_id: UUID, permissions: Iterable[PermissionLike]
    ) -> bool:
        wanted = {_ident(p) for p in permissions}
        return bool(wanted & await self.effective_permissions(actor_id))

    async def has_all_permissions(
        self, actor_id: UUID, permissions: Iterable[PermissionLike]
    ) -> bool:
        wanted = {_ident(p) for p in permissions}
        return wanted.issubset(await self.effective_permissions(actor_id))

    async def has_role(self, actor_id: UUID, role_name: str) -> bool:
        try:
            return await self.assignments.has_active_role(actor_id, role_name, self.clock())
        except Exception:
            logger.exception(f"Role lookup failed for actor {actor_id}, denying")
            raise

    async def has_team_permission(
        self, actor_id: UUID, team_id: UUID, permission: PermissionLike
    ) -> bool:
        """Global permission, or one implied by the actor's role in the team."""
        if await self.has_permission(actor_id, permission):
            return True

        try:
            membership = await self.memberships.get_active(team_id, actor_id)
        except Exception:
            logger.exception(
                f"Membership lookup failed for actor {actor_id} in team {team_id}, denying"
            )
            raise

        if membership is None:
            return False
        return team_role_implies(membership.role, _ident(permission))

    async def team_role(self, actor_id: UUID, team_id: UUID) -> Optional[TeamRole]:
        """The actor's active membership role in the team, if any."""
        try:
            membership = await self.memberships.get_active(team_id, actor_id)
        except Exception:
            logger.exception(
                f"Membership lookup failed for actor {actor_id} in team {team_id}, denying"
            )
            raise
        return None if membership is None else TeamRole(membership.role)


# ============================================================
# Checks against a request context
# ============================================================


async def check_permission(
    resolver: PermissionResolver,
    context: AuthContext,
    permissions: Union[PermissionLike, Iterable[PermissionLike]],
    require_all: bool = True,
) -> bool:
    """
    Allow/deny for one permission or a list of them.

    Permissions carried in the token are trusted for a positive answer;
    anything they do not cover is resolved against storage.
    """
    if isinstance(permissions, (str, Permission)):
        wanted = [_ident(permissions)]
    else:
        wanted = [_ident(p) for p in permissions]

    if require_all:
        if set(wanted).issubset(context.permissions):
            return True
        return await resolver.has_all_permissions(context.actor_id, wanted)

    if set(wanted) & context.permissions:
        return True
    return await resolver.has_any_permission(context.actor_id, wanted)


async def check_team_permission(
    resolver: PermissionResolver,
    context: AuthContext,
    team_id: UUID,
    permission: PermissionLike,
) -> bool:
    """Allow/deny for a permission within a team."""
    if _ident(permission) in context.permissions:
        return True
    return await resolver.has_team_permission(context.actor_id, team_id, permission)


async def enforce_permission(
    resolver: PermissionResolver,
    context: AuthContext,
    permissions: Union[PermissionLike, Iterable[PermissionLike]],
    require_all: bool = True,
) -> None:
    """Raise a generic AuthorizationError when ``check_permission`` denies."""
    if not await check_permission(resolver, context, permissions, require_all):
        logger.warning(
            f"Access denied: actor={context.actor_id} "
            f"{'all' if require_all else 'any'} of {permissions}"
        )
        raise AuthorizationError()


async def enforce_team_permission(
    resolver: PermissionResolver,
    context: AuthContext,
    team_id: UUID,
    permission: PermissionLike,
) -> None:
    """Raise a generic AuthorizationError when ``check_team_permission`` denies."""
    if not await check_team_permission(resolver, context, team_id, permission):
        logger.warning(
            f"Access denied: actor={context.actor_id} team={team_id} "
            f"permission={_ident(permission)}"
        )
        raise AuthorizationError()


async def is_admin(resolver: PermissionResolver, context: AuthContext) -> bool:
    """Global ``admin`` role, from the token or from storage."""
    if ADMIN_ROLE in context.role_names:
        return True
    return await resolver.has_role(context.actor_id, ADMIN_ROLE)


async def enforce_team_role(
    resolver: PermissionResolver,
    context: AuthContext,
    team_id: UUID,
    min_role: TeamRole,
) -> None:
    """
    Require an active membership of at least ``min_role`` in the team.

    Global admins pass without a membership.
    """
    if await is_admin(resolver, context):
        return

    role = await resolver.team_role(context.actor_id, team_id)
    if role is None or role < min_role:
        logger.warning(
            f"Access denied: actor={context.actor_id} team={team_id} "
            f"role={role.name if role is not None else None} needs {min_role.name}"
        )
        raise AuthorizationError()
