"""
Team Membership Schemas

Pydantic models for team member management.
"""

from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, ConfigDict, field_validator

from collabhub.api.access.permissions import TeamRole


def _parse_team_role(value):
    """Accept role names ('lead', 'OWNER') as well as ordinals."""
    if isinstance(value, str):
        try:
            return TeamRole[value.upper()]
        except KeyError:
            raise ValueError(f"Unknown team role: {value}")
    return value


TeamRoleField = Annotated[TeamRole, BeforeValidator(_parse_team_role)]


class AddMemberRequest(BaseModel):
    user_id: UUID
    role: TeamRoleField = TeamRole.MEMBER


class ChangeMemberRoleRequest(BaseModel):
    role: TeamRoleField


class MemberResponse(BaseModel):
    """Active team membership."""

    model_config = ConfigDict(from_attributes=True)

    team_id: UUID
    user_id: UUID
    role: str
    joined_at: datetime
    left_at: Optional[datetime] = None

    @field_validator("role", mode="before")
    @classmethod
    def role_name(cls, v):
        return v.name if isinstance(v, TeamRole) else v
