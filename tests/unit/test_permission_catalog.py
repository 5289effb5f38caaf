"""
Tests for the Permission Catalog
================================

Catalog membership, validation, default roles and the team role ladder.
"""

import pytest

from collabhub.api.access.permissions import (
    CATALOG,
    DEFAULT_ROLES,
    PERMISSION_DESCRIPTIONS,
    Permission,
    TeamRole,
    available_permissions,
    is_known_permission,
    team_role_implies,
    validate_permissions,
)
from collabhub.api.errors import InvalidPermissionError, ValidationError


class TestCatalog:
    """Tests for catalog membership."""

    def test_every_permission_has_description(self):
        """Each permission should be described for role administration."""
        assert set(PERMISSION_DESCRIPTIONS) == set(Permission)

    def test_known_permission(self):
        assert is_known_permission("teams:manage_members")

    def test_unknown_permission(self):
        assert not is_known_permission("not:a:real:permission")

    def test_available_permissions_lists_catalog(self):
        permissions = available_permissions()
        assert set(permissions) == CATALOG
        assert permissions["admin:audit_logs"] == "View audit logs"


class TestValidatePermissions:
    """Tests for permission validation."""

    def test_rejects_unknown_identifier(self):
        """Unknown identifiers should fail with the offending names."""
        with pytest.raises(InvalidPermissionError) as exc_info:
            validate_permissions(["users:read", "not:a:real:permission"])

        assert exc_info.value.invalid == ["not:a:real:permission"]
        assert exc_info.value.details == {"invalid_permissions": ["not:a:real:permission"]}

    def test_invalid_permission_is_validation_error(self):
        with pytest.raises(ValidationError):
            validate_permissions(["bogus"])

    def test_deduplicates_in_catalog_order(self):
        result = validate_permissions(["teams:read", "users:read", "teams:read"])
        assert result == ["users:read", "teams:read"]

    def test_accepts_enum_members(self):
        assert validate_permissions([Permission.AI_ANALYZE]) == ["ai:analyze"]

    def test_empty_is_valid(self):
        assert validate_permissions([]) == []


class TestDefaultRoles:
    """Tests for the seeded system roles."""

    def test_expected_roles(self):
        assert set(DEFAULT_ROLES) == {"admin", "hr_manager", "team_lead", "member", "viewer"}

    def test_admin_has_every_permission(self):
        assert set(DEFAULT_ROLES["admin"]["permissions"]) == CATALOG

    @pytest.mark.parametrize("name", ["hr_manager", "team_lead", "member", "viewer"])
    def test_role_permissions_are_in_catalog(self, name):
        assert set(DEFAULT_ROLES[name]["permissions"]) <= CATALOG

    def test_member_cannot_write_teams(self):
        assert "teams:write" not in DEFAULT_ROLES["member"]["permissions"]


class TestTeamRoles:
    """Tests for the team role ladder."""

    def test_total_order(self):
        assert TeamRole.VIEWER < TeamRole.MEMBER < TeamRole.LEAD < TeamRole.OWNER

    def test_sorting(self):
        roles = [TeamRole.OWNER, TeamRole.VIEWER, TeamRole.LEAD, TeamRole.MEMBER]
        assert sorted(roles) == [TeamRole.VIEWER, TeamRole.MEMBER, TeamRole.LEAD, TeamRole.OWNER]

    def test_lead_manages_members(self):
        assert team_role_implies(TeamRole.LEAD, "teams:manage_members")

    def test_owner_manages_members(self):
        assert team_role_implies(TeamRole.OWNER, "teams:manage_members")

    def test_member_does_not_manage_members(self):
        assert not team_role_implies(TeamRole.MEMBER, "teams:manage_members")

    def test_viewer_is_read_only(self):
        assert team_role_implies(TeamRole.VIEWER, "documents:read")
        assert not team_role_implies(TeamRole.VIEWER, "documents:write")
