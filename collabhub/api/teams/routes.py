"""
Team Membership Routes

Member management within a team. Listing, adding and removing need
``teams:manage_members``, either globally or through the caller's role in
the team. Changing a member's role needs OWNER in the team, or admin.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status

from collabhub.api.access.permissions import Permission, TeamRole
from collabhub.api.access.rbac import AuthContext
from collabhub.api.access.teams import TeamMembershipService
from collabhub.api.audit.recorder import AuditRecorder
from collabhub.api.db.repositories import SqlUnitOfWork
from collabhub.api.dependencies import (
    get_recorder,
    get_uow,
    require_team_permission,
    require_team_role,
)
from collabhub.api.teams.schemas import (
    AddMemberRequest,
    ChangeMemberRoleRequest,
    MemberResponse,
)


router = APIRouter()

can_manage_members = require_team_permission(Permission.TEAMS_MANAGE_MEMBERS)
is_team_owner = require_team_role(TeamRole.OWNER)


def get_membership_service(
    uow: SqlUnitOfWork = Depends(get_uow),
    recorder: AuditRecorder = Depends(get_recorder),
) -> TeamMembershipService:
    return TeamMembershipService(uow, recorder)


@router.get(
    "/{team_id}/members",
    response_model=List[MemberResponse],
    summary="List team members",
)
async def list_members(
    team_id: UUID,
    actor: AuthContext = Depends(can_manage_members),
    service: TeamMembershipService = Depends(get_membership_service),
) -> List[MemberResponse]:
    return [MemberResponse.model_validate(m) for m in await service.list_members(team_id)]


@router.post(
    "/{team_id}/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a team member",
)
async def add_member(
    team_id: UUID,
    data: AddMemberRequest,
    actor: AuthContext = Depends(can_manage_members),
    service: TeamMembershipService = Depends(get_membership_service),
) -> MemberResponse:
    membership = await service.add_member(team_id, data.user_id, data.role, actor=actor)
    return MemberResponse.model_validate(membership)


@router.put(
    "/{team_id}/members/{user_id}",
    response_model=MemberResponse,
    summary="Change a member's team role",
)
async def change_member_role(
    team_id: UUID,
    user_id: UUID,
    data: ChangeMemberRoleRequest,
    actor: AuthContext = Depends(is_team_owner),
    service: TeamMembershipService = Depends(get_membership_service),
) -> MemberResponse:
    """
    Change a member's role.

    The last OWNER cannot be demoted; promote another member first.
    """
    membership = await service.change_role(team_id, user_id, data.role, actor=actor)
    return MemberResponse.model_validate(membership)


@router.delete(
    "/{team_id}/members/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a team member",
)
async def remove_member(
    team_id: UUID,
    user_id: UUID,
    actor: AuthContext = Depends(can_manage_members),
    service: TeamMembershipService = Depends(get_membership_service),
) -> None:
    """The last OWNER cannot be removed; transfer ownership first."""
    await service.remove_member(team_id, user_id, actor=actor)
