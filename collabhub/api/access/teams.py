"""
CollabHub - Team Membership

Team-scoped roles on the ladder VIEWER < MEMBER < LEAD < OWNER.
A team always keeps at least one active OWNER: the last one can be
neither demoted nor removed until ownership is transferred.

An actor cannot grant, or act on a member holding, a role above its own.
Admins and system calls act as OWNER; global member managers without a
membership act as LEAD.
"""

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional
from uuid import UUID

from collabhub.api.access.permissions import TeamRole
from collabhub.api.access.rbac import PermissionResolver, is_admin
from collabhub.api.audit.recorder import AuditRecorder
from collabhub.api.audit.types import AuditAction, AuditEvent
from collabhub.api.db.models import TeamMembership, utcnow
from collabhub.api.db.ports import UnitOfWork
from collabhub.api.errors import AuthorizationError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)

SOLE_OWNER_MESSAGE = "Cannot remove or demote the only owner. Transfer ownership first."


class TeamMembershipService:
    """Add, re-role and remove team members."""

    def __init__(
        self,
        uow: UnitOfWork,
        recorder: Optional[AuditRecorder] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow = uow
        self.recorder = recorder
        self.clock = clock

    async def list_members(self, team_id: UUID) -> List[TeamMembership]:
        return await self.uow.memberships.list_active(team_id)

    async def add_member(
        self,
        team_id: UUID,
        user_id: UUID,
        role: TeamRole = TeamRole.MEMBER,
        actor: Any = None,
    ) -> TeamMembership:
        """
        Add an actor to a team.

        Raises:
            NotFoundError: Unknown actor
            AuthorizationError: Role above the actor's own
            ConflictError: Actor already has an active membership
        """
        role = TeamRole(role)
        await self._check_ceiling(team_id, actor, role)
        if await self.uow.users.get_by_id(user_id) is None:
            raise NotFoundError("User")

        if await self.uow.memberships.get_active(team_id, user_id) is not None:
            raise ConflictError("User is already a member of this team", code="ALREADY_MEMBER")

        membership = await self.uow.memberships.add(
            TeamMembership(team_id=team_id, user_id=user_id, role=role, joined_at=self.clock())
        )
        await self.uow.commit()

        logger.info(f"User {user_id} joined team {team_id} as {role.name}")
        self._audit(
            actor,
            AuditAction.TEAM_MEMBER_ADDED,
            team_id,
            details={"user_id": str(user_id), "role": role.name},
        )
        return membership

    async def change_role(
        self,
        team_id: UUID,
        user_id: UUID,
        role: TeamRole,
        actor: Any = None,
    ) -> TeamMembership:
        """
        Change a member's team role.

        Raises:
            NotFoundError: No active membership
            AuthorizationError: Either role above the actor's own
            ConflictError: Demoting the sole OWNER
        """
        role = TeamRole(role)
        membership = await self._active(team_id, user_id)
        previous = membership.role
        await self._check_ceiling(team_id, actor, previous, role)
        if previous == role:
            return membership

        if previous == TeamRole.OWNER:
            await self._guard_sole_owner(team_id, user_id)

        membership.role = role
        await self.uow.commit()

        logger.info(f"User {user_id} in team {team_id}: {previous.name} -> {role.name}")
        self._audit(
            actor,
            AuditAction.TEAM_MEMBER_UPDATED,
            team_id,
            details={"user_id": str(user_id), "from": previous.name, "to": role.name},
        )
        return membership

    async def remove_member(self, team_id: UUID, user_id: UUID, actor: Any = None) -> None:
        """
        End an active membership.

        Raises:
            NotFoundError: No active membership
            AuthorizationError: Member's role above the actor's own
            ConflictError: Removing the sole OWNER
        """
        membership = await self._active(team_id, user_id)
        await self._check_ceiling(team_id, actor, membership.role)

        if membership.role == TeamRole.OWNER:
            await self._guard_sole_owner(team_id, user_id)

        membership.left_at = self.clock()
        await self.uow.commit()

        logger.info(f"User {user_id} removed from team {team_id}")
        self._audit(
            actor,
            AuditAction.TEAM_MEMBER_REMOVED,
            team_id,
            details={"user_id": str(user_id), "role": membership.role.name},
        )

    # ------------------------------------------------------------

    async def _active(self, team_id: UUID, user_id: UUID) -> TeamMembership:
        membership = await self.uow.memberships.get_active(team_id, user_id)
        if membership is None:
            raise NotFoundError("Team membership")
        return membership

    async def _role_ceiling(self, team_id: UUID, actor: Any) -> TeamRole:
        if actor is None:
            return TeamRole.OWNER
        resolver = PermissionResolver(self.uow.assignments, self.uow.memberships, self.clock)
        if await is_admin(resolver, actor):
            return TeamRole.OWNER
        role = await resolver.team_role(actor.actor_id, team_id)
        return TeamRole.LEAD if role is None else role

    async def _check_ceiling(self, team_id: UUID, actor: Any, *roles: TeamRole) -> None:
        ceiling = await self._role_ceiling(team_id, actor)
        over = [TeamRole(r).name for r in roles if TeamRole(r) > ceiling]
        if over:
            logger.warning(
                f"Access denied: actor={actor.actor_id} team={team_id} "
                f"role={ceiling.name} cannot manage {over[0]}"
            )
            raise AuthorizationError()

    async def _guard_sole_owner(self, team_id: UUID, user_id: UUID) -> None:
        owners = await self.uow.memberships.count_active_owners(team_id, lock=True)
        if owners <= 1:
            logger.warning(f"Refusing to drop sole owner {user_id} of team {team_id}")
            raise ConflictError(SOLE_OWNER_MESSAGE, code="SOLE_OWNER")

    def _audit(self, actor: Any, action: AuditAction, team_id: UUID, **kwargs) -> None:
        if self.recorder is None:
            return
        self.recorder.record(AuditEvent.by(actor, action, "Team", resource_id=team_id, **kwargs))
