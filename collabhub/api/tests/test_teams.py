"""
Team Membership Tests

Tests for membership changes and the rule that a team always keeps
at least one active OWNER.
"""

import uuid

import pytest
import pytest_asyncio

from collabhub.api.access.permissions import TeamRole
from collabhub.api.access.rbac import AuthContext
from collabhub.api.access.teams import TeamMembershipService
from collabhub.api.audit.types import AuditAction
from collabhub.api.db.ports import AuditLogFilter
from collabhub.api.errors import AuthorizationError, ConflictError, NotFoundError


@pytest.fixture
def service(uow, recorder) -> TeamMembershipService:
    return TeamMembershipService(uow, recorder)


@pytest_asyncio.fixture
async def team(make_user, service):
    """A team with one owner and one member."""
    team_id = uuid.uuid4()
    owner = await make_user()
    member = await make_user()
    await service.add_member(team_id, owner.id, TeamRole.OWNER)
    await service.add_member(team_id, member.id)
    return team_id, owner, member


@pytest.mark.asyncio
async def test_add_member_defaults_to_member(team, service):
    team_id, owner, member = team

    members = {m.user_id: m.role for m in await service.list_members(team_id)}

    assert members == {owner.id: TeamRole.OWNER, member.id: TeamRole.MEMBER}


@pytest.mark.asyncio
async def test_add_existing_member_conflicts(team, service):
    team_id, _, member = team

    with pytest.raises(ConflictError) as exc_info:
        await service.add_member(team_id, member.id, TeamRole.LEAD)

    assert exc_info.value.code == "ALREADY_MEMBER"


@pytest.mark.asyncio
async def test_add_unknown_user(service):
    with pytest.raises(NotFoundError):
        await service.add_member(uuid.uuid4(), uuid.uuid4())


@pytest.mark.asyncio
async def test_sole_owner_cannot_be_removed(team, service):
    team_id, owner, _ = team

    with pytest.raises(ConflictError) as exc_info:
        await service.remove_member(team_id, owner.id)

    assert exc_info.value.code == "SOLE_OWNER"


@pytest.mark.asyncio
async def test_sole_owner_cannot_be_demoted(team, service):
    team_id, owner, _ = team

    with pytest.raises(ConflictError):
        await service.change_role(team_id, owner.id, TeamRole.LEAD)

    membership = await service.uow.memberships.get_active(team_id, owner.id)
    assert membership.role == TeamRole.OWNER


@pytest.mark.asyncio
async def test_owner_removable_after_transfer(team, service):
    team_id, owner, member = team

    await service.change_role(team_id, member.id, TeamRole.OWNER)
    await service.remove_member(team_id, owner.id)

    members = {m.user_id: m.role for m in await service.list_members(team_id)}
    assert members == {member.id: TeamRole.OWNER}


@pytest.mark.asyncio
async def test_non_owner_can_be_removed(team, service):
    team_id, _, member = team

    await service.remove_member(team_id, member.id)

    assert await service.uow.memberships.get_active(team_id, member.id) is None


@pytest.mark.asyncio
async def test_rejoin_after_leaving(team, service):
    team_id, _, member = team

    await service.remove_member(team_id, member.id)
    rejoined = await service.add_member(team_id, member.id, TeamRole.VIEWER)

    assert rejoined.role == TeamRole.VIEWER
    assert rejoined.left_at is None


@pytest.mark.asyncio
async def test_change_role_without_membership(team, service):
    team_id, _, _ = team

    with pytest.raises(NotFoundError):
        await service.change_role(team_id, uuid.uuid4(), TeamRole.LEAD)


@pytest.mark.asyncio
async def test_change_to_same_role_is_noop(team, service, recorder):
    team_id, _, member = team
    before = recorder.get_stats()["events_enqueued"]

    await service.change_role(team_id, member.id, TeamRole.MEMBER)

    assert recorder.get_stats()["events_enqueued"] == before


@pytest.mark.asyncio
async def test_owners_in_other_teams_do_not_count(make_user, service):
    """Ownership is counted per team."""
    owner = await make_user()
    first, second = uuid.uuid4(), uuid.uuid4()
    await service.add_member(first, owner.id, TeamRole.OWNER)
    await service.add_member(second, owner.id, TeamRole.OWNER)

    with pytest.raises(ConflictError):
        await service.remove_member(first, owner.id)


@pytest.mark.asyncio
async def test_membership_changes_are_audited(team, uow, recorder, service):
    team_id, _, member = team

    await service.change_role(team_id, member.id, TeamRole.LEAD)
    await recorder.flush()

    entries, _ = await uow.audit_log.query(AuditLogFilter(resource="Team"), 1, 10)
    actions = [e.action for e in entries]
    assert actions == [
        AuditAction.TEAM_MEMBER_UPDATED.value,
        AuditAction.TEAM_MEMBER_ADDED.value,
        AuditAction.TEAM_MEMBER_ADDED.value,
    ]
    assert entries[0].resource_id == str(team_id)
    assert entries[0].details == {"user_id": str(member.id), "from": "MEMBER", "to": "LEAD"}


# ==================== Role ceiling ====================


@pytest_asyncio.fixture
async def lead(team, make_user, service):
    team_id = team[0]
    user = await make_user()
    await service.add_member(team_id, user.id, TeamRole.LEAD)
    return AuthContext(actor_id=user.id)


@pytest.mark.asyncio
async def test_lead_cannot_promote_self_to_owner(team, lead, service):
    team_id = team[0]

    with pytest.raises(AuthorizationError):
        await service.change_role(team_id, lead.actor_id, TeamRole.OWNER, actor=lead)

    membership = await service.uow.memberships.get_active(team_id, lead.actor_id)
    assert membership.role == TeamRole.LEAD


@pytest.mark.asyncio
async def test_lead_cannot_touch_owner(team, lead, service):
    team_id, owner, _ = team

    with pytest.raises(AuthorizationError):
        await service.change_role(team_id, owner.id, TeamRole.VIEWER, actor=lead)
    with pytest.raises(AuthorizationError):
        await service.remove_member(team_id, owner.id, actor=lead)

    membership = await service.uow.memberships.get_active(team_id, owner.id)
    assert membership.role == TeamRole.OWNER


@pytest.mark.asyncio
async def test_lead_grants_up_to_own_role(team, lead, make_user, service):
    team_id, _, member = team
    newcomer = await make_user()

    with pytest.raises(AuthorizationError):
        await service.add_member(team_id, newcomer.id, TeamRole.OWNER, actor=lead)

    await service.add_member(team_id, newcomer.id, TeamRole.LEAD, actor=lead)
    await service.change_role(team_id, member.id, TeamRole.VIEWER, actor=lead)

    members = {m.user_id: m.role for m in await service.list_members(team_id)}
    assert members[newcomer.id] == TeamRole.LEAD
    assert members[member.id] == TeamRole.VIEWER


@pytest.mark.asyncio
async def test_member_cannot_grant_lead(team, service):
    team_id, _, member = team
    actor = AuthContext(actor_id=member.id)

    with pytest.raises(AuthorizationError):
        await service.change_role(team_id, member.id, TeamRole.LEAD, actor=actor)


@pytest.mark.asyncio
async def test_manager_without_membership_acts_as_lead(team, make_user, service):
    team_id, owner, member = team
    manager = AuthContext(actor_id=(await make_user()).id)

    await service.change_role(team_id, member.id, TeamRole.LEAD, actor=manager)
    with pytest.raises(AuthorizationError):
        await service.change_role(team_id, member.id, TeamRole.OWNER, actor=manager)
    with pytest.raises(AuthorizationError):
        await service.remove_member(team_id, owner.id, actor=manager)


@pytest.mark.asyncio
async def test_admin_can_grant_ownership(team, make_user, service):
    team_id, _, member = team
    admin = AuthContext(actor_id=(await make_user()).id, role_names={"admin"})

    membership = await service.change_role(team_id, member.id, TeamRole.OWNER, actor=admin)

    assert membership.role == TeamRole.OWNER
