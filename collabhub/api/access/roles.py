"""
CollabHub - Role Administration

Create / update / delete roles, assign and revoke them, and seed the
system roles. Every mutation is committed before its audit event is
handed to the recorder.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from collabhub.api.access.permissions import (
    DEFAULT_ROLES,
    available_permissions,
    validate_permissions,
)
from collabhub.api.audit.recorder import AuditRecorder
from collabhub.api.audit.types import AuditAction, AuditEvent
from collabhub.api.db.models import Role, RoleAssignment, utcnow
from collabhub.api.db.ports import UnitOfWork
from collabhub.api.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class RoleService:
    """Role and role-assignment management."""

    def __init__(
        self,
        uow: UnitOfWork,
        recorder: Optional[AuditRecorder] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow = uow
        self.recorder = recorder
        self.clock = clock

    # ============================================================
    # Roles
    # ============================================================

    async def list_roles(self) -> List[Tuple[Role, int]]:
        """All roles with their assignment counts."""
        return await self.uow.roles.list_with_counts()

    def list_available_permissions(self) -> Dict[str, str]:
        return available_permissions()

    async def create_role(
        self,
        name: str,
        permissions: Iterable[str],
        description: Optional[str] = None,
        actor: Any = None,
    ) -> Role:
        """
        Create a custom role.

        Raises:
            ValidationError: Blank name
            InvalidPermissionError: Unknown permission identifier
            ConflictError: Name already taken
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Role name is required")

        validated = validate_permissions(permissions)

        if await self.uow.roles.get_by_name(name) is not None:
            raise ConflictError(f"Role '{name}' already exists", code="ROLE_EXISTS")

        role = await self.uow.roles.add(
            Role(name=name, description=description, permissions=validated, is_system=False)
        )
        await self.uow.commit()

        logger.info(f"Role created: {name} ({len(validated)} permissions)")
        self._audit(
            actor,
            AuditAction.ROLE_CREATED,
            resource_id=role.id,
            details={"name": name, "permissions": validated},
        )
        return role

    async def update_role(
        self,
        role_id: UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
        permissions: Optional[Iterable[str]] = None,
        actor: Any = None,
    ) -> Role:
        """
        Update a role. System roles keep their name.

        Raises:
            NotFoundError: Unknown role
            ValidationError: Renaming a system role, or a blank name
            InvalidPermissionError: Unknown permission identifier
            ConflictError: New name already taken
        """
        role = await self.uow.roles.get_by_id(role_id)
        if role is None:
            raise NotFoundError("Role")

        changes: Dict[str, Any] = {}

        if name is not None and name.strip() != role.name:
            if role.is_system:
                raise ValidationError(
                    "Cannot modify system role name", code="SYSTEM_ROLE_PROTECTED"
                )
            name = name.strip()
            if not name:
                raise ValidationError("Role name is required")
            if await self.uow.roles.get_by_name(name) is not None:
                raise ConflictError(f"Role '{name}' already exists", code="ROLE_EXISTS")
            changes["name"] = {"from": role.name, "to": name}
            role.name = name

        if description is not None and description != role.description:
            changes["description"] = description
            role.description = description

        if permissions is not None:
            validated = validate_permissions(permissions)
            if validated != list(role.permissions or []):
                changes["permissions"] = validated
                role.permissions = validated

        if changes:
            await self.uow.roles.save(role)
            await self.uow.commit()
            logger.info(f"Role updated: {role.name} ({', '.join(changes)})")
            self._audit(actor, AuditAction.ROLE_UPDATED, resource_id=role.id, details=changes)
        return role

    async def delete_role(self, role_id: UUID, actor: Any = None) -> int:
        """
        Delete a custom role, detaching its assignments first.

        Returns:
            Number of assignments removed
        """
        role = await self.uow.roles.get_by_id(role_id)
        if role is None:
            raise NotFoundError("Role")
        if role.is_system:
            raise ValidationError("Cannot delete system roles", code="SYSTEM_ROLE_PROTECTED")

        name = role.name
        removed = await self.uow.assignments.delete_for_role(role.id)
        await self.uow.roles.delete(role)
        await self.uow.commit()

        logger.info(f"Role deleted: {name} ({removed} assignments removed)")
        self._audit(
            actor,
            AuditAction.ROLE_DELETED,
            resource_id=role_id,
            details={"name": name, "assignments_removed": removed},
        )
        return removed

    # ============================================================
    # Assignments
    # ============================================================

    async def assign_role(
        self,
        user_id: UUID,
        role_name: str,
        granted_by: Optional[UUID] = None,
        expires_at: Optional[datetime] = None,
        actor: Any = None,
    ) -> RoleAssignment:
        """
        Grant a role to an actor.

        A lapsed (expired) assignment of the same role is renewed in place;
        an active one is a conflict.

        Raises:
            NotFoundError: Unknown actor or role
            ValidationError: ``expires_at`` not in the future
            ConflictError: Actor already holds the role
        """
        now = self.clock()
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= now:
                raise ValidationError("expires_at must be in the future")

        if await self.uow.users.get_by_id(user_id) is None:
            raise NotFoundError("User")

        role = await self.uow.roles.get_by_name(role_name)
        if role is None:
            raise NotFoundError("Role")

        if granted_by is None:
            granted_by = getattr(actor, "actor_id", None)

        existing = await self.uow.assignments.get(user_id, role.id)
        if existing is not None:
            renewed = await self.uow.assignments.renew_expired(
                user_id, role.id, granted_by, now, expires_at
            )
            if not renewed:
                raise ConflictError("User already has this role", code="ROLE_ALREADY_ASSIGNED")
            assignment = await self.uow.assignments.get(user_id, role.id)
        else:
            assignment = await self.uow.assignments.add(
                RoleAssignment(
                    user_id=user_id,
                    role=role,
                    granted_by=granted_by,
                    granted_at=now,
                    expires_at=expires_at,
                )
            )
        await self.uow.commit()

        logger.info(f"Role {role_name} assigned to user {user_id} by {granted_by}")
        self._audit(
            actor,
            AuditAction.ROLE_ASSIGNED,
            resource="User",
            resource_id=user_id,
            details={
                "role": role_name,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
        return assignment

    async def revoke_role(self, user_id: UUID, role_name: str, actor: Any = None) -> bool:
        """
        Remove a role from an actor. Revoking an absent assignment is a no-op.

        Returns:
            True if an assignment was removed
        """
        role = await self.uow.roles.get_by_name(role_name)
        if role is None:
            raise NotFoundError("Role")

        removed = await self.uow.assignments.delete(user_id, role.id)
        await self.uow.commit()

        if not removed:
            return False

        logger.info(f"Role {role_name} revoked from user {user_id}")
        self._audit(
            actor,
            AuditAction.ROLE_REVOKED,
            resource="User",
            resource_id=user_id,
            details={"role": role_name},
        )
        return True

    # ============================================================
    # Bootstrap
    # ============================================================

    async def initialize_default_roles(self) -> List[str]:
        """
        Upsert the system roles by name. Safe to re-run.

        Returns:
            Names of the roles that were created or changed
        """
        changed = []
        for name, definition in DEFAULT_ROLES.items():
            permissions = validate_permissions(definition["permissions"])
            role = await self.uow.roles.get_by_name(name)

            if role is None:
                try:
                    await self.uow.roles.add(
                        Role(
                            name=name,
                            description=definition["description"],
                            permissions=permissions,
                            is_system=True,
                        )
                    )
                except ConflictError:
                    # Seeded concurrently by another instance
                    logger.info(f"Default role {name} already present")
                    continue
                changed.append(name)
            elif (
                role.description != definition["description"]
                or list(role.permissions or []) != permissions
                or not role.is_system
            ):
                role.description = definition["description"]
                role.permissions = permissions
                role.is_system = True
                await self.uow.roles.save(role)
                changed.append(name)

            await self.uow.commit()

        if changed:
            logger.info(f"Default roles initialized: {', '.join(changed)}")
        return changed

    # ------------------------------------------------------------

    def _audit(self, actor: Any, action: AuditAction, resource: str = "Role", **kwargs) -> None:
        if self.recorder is None:
            return
        self.recorder.record(AuditEvent.by(actor, action, resource, **kwargs))
