"""
CollabHub - Incident Manager

Deduplicates, persists and resolves security incidents.

Dedup rule: a candidate merges into the most recent OPEN/INVESTIGATING
incident of the same type that shares an affected actor and was detected
within the correlation window. Merging appends the candidate's description
(newline-joined) and leaves severity and status untouched; otherwise a new
OPEN incident is inserted.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from uuid import UUID

from collabhub.api.audit.recorder import AuditRecorder
from collabhub.api.audit.types import (
    AuditAction,
    AuditEvent,
    IncidentCandidate,
    IncidentStatus,
    can_transition,
)
from collabhub.api.db.models import SecurityIncident, SecurityIncidentActor, utcnow
from collabhub.api.db.ports import IncidentFilter, Page, UnitOfWorkFactory
from collabhub.api.errors import InvalidTransitionError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class IncidentManager:
    """Create-or-merge and resolution workflow for security incidents."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        recorder: Optional[AuditRecorder] = None,
        correlation_window_minutes: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow_factory = uow_factory
        self.recorder = recorder
        self.correlation_window = timedelta(minutes=correlation_window_minutes)
        self.clock = clock
        # Read-then-write below must not interleave within this process
        self._merge_lock = asyncio.Lock()

    async def create_or_merge(self, candidate: IncidentCandidate) -> SecurityIncident:
        """Insert a new incident or fold the candidate into a matching one."""
        async with self._merge_lock:
            async with self.uow_factory() as uow:
                now = self.clock()
                await uow.incidents.lock_type(candidate.type)
                existing = await uow.incidents.find_active_match(
                    candidate.type,
                    candidate.affected_users,
                    now - self.correlation_window,
                )

                if existing is not None:
                    existing.description = f"{existing.description}\n{candidate.description}"
                    known = set(existing.affected_users)
                    for user_id in candidate.affected_users:
                        if user_id not in known:
                            existing.actors.append(SecurityIncidentActor(user_id=user_id))
                            known.add(user_id)
                    incident, created = existing, False
                else:
                    incident = await uow.incidents.add(
                        SecurityIncident(
                            type=candidate.type,
                            severity=candidate.severity,
                            title=candidate.title,
                            description=candidate.description,
                            status=IncidentStatus.OPEN,
                            detected_at=now,
                            actors=[
                                SecurityIncidentActor(user_id=u)
                                for u in dict.fromkeys(candidate.affected_users)
                            ],
                        )
                    )
                    created = True

        if created:
            logger.warning(
                f"Security incident created: {incident.title} "
                f"[{incident.type.value}/{incident.severity.value}] id={incident.id}"
            )
            self._audit(
                None,
                AuditAction.SECURITY_INCIDENT_CREATED,
                incident,
                details={"type": incident.type.value, "severity": incident.severity.value},
            )
        else:
            logger.info(f"Detection merged into incident {incident.id} ({incident.type.value})")
        return incident

    async def resolve(
        self, incident_id: UUID, resolution: str, resolver: Any = None
    ) -> SecurityIncident:
        """
        Move an incident to RESOLVED, stamping resolver and time.

        Args:
            incident_id: Incident to resolve
            resolution: Non-empty resolution text
            resolver: AuthContext of the resolving actor (None for system)

        Raises:
            ValidationError: Empty resolution text
            NotFoundError: Unknown incident
            InvalidTransitionError: Incident already RESOLVED / FALSE_POSITIVE
        """
        if not resolution or not resolution.strip():
            raise ValidationError("Resolution text is required", code="RESOLUTION_REQUIRED")

        async with self.uow_factory() as uow:
            incident = await self._load(uow, incident_id)
            self._check_transition(incident, IncidentStatus.RESOLVED)

            incident.status = IncidentStatus.RESOLVED
            incident.resolution = resolution.strip()
            incident.resolved_by = getattr(resolver, "actor_id", None)
            incident.resolved_at = self.clock()

        logger.info(f"Security incident {incident_id} resolved by {incident.resolved_by}")
        self._audit(
            resolver,
            AuditAction.SECURITY_INCIDENT_RESOLVED,
            incident,
            details={"resolution": incident.resolution},
        )
        return incident

    async def transition(
        self,
        incident_id: UUID,
        status: IncidentStatus,
        actor: Any = None,
        note: Optional[str] = None,
    ) -> SecurityIncident:
        """Move an incident along the state machine. RESOLVED goes through ``resolve``."""
        status = IncidentStatus(status)
        if status == IncidentStatus.RESOLVED:
            return await self.resolve(incident_id, note or "", actor)

        async with self.uow_factory() as uow:
            incident = await self._load(uow, incident_id)
            previous = incident.status
            self._check_transition(incident, status)

            incident.status = status
            if status == IncidentStatus.FALSE_POSITIVE:
                incident.resolution = note
                incident.resolved_by = getattr(actor, "actor_id", None)
                incident.resolved_at = self.clock()

        logger.info(f"Security incident {incident_id}: {previous.value} -> {status.value}")
        self._audit(
            actor,
            AuditAction.SECURITY_INCIDENT_UPDATED,
            incident,
            details={"from": previous.value, "to": status.value},
        )
        return incident

    async def get(self, incident_id: UUID) -> SecurityIncident:
        async with self.uow_factory() as uow:
            return await self._load(uow, incident_id)

    async def list_incidents(
        self, filters: Optional[IncidentFilter] = None, page: int = 1, limit: int = 20
    ) -> Page[SecurityIncident]:
        """Paginated incidents, most recently detected first."""
        async with self.uow_factory() as uow:
            items, total = await uow.incidents.query(filters or IncidentFilter(), page, limit)
        return Page(items=items, page=page, limit=limit, total=total)

    # ------------------------------------------------------------

    @staticmethod
    async def _load(uow, incident_id: UUID) -> SecurityIncident:
        incident = await uow.incidents.get(incident_id)
        if incident is None:
            raise NotFoundError("Security incident")
        return incident

    @staticmethod
    def _check_transition(incident: SecurityIncident, target: IncidentStatus) -> None:
        if not can_transition(incident.status, target):
            raise InvalidTransitionError(incident.status.value, target.value)

    def _audit(self, actor: Any, action: AuditAction, incident: SecurityIncident, **kwargs) -> None:
        if self.recorder is None:
            return
        self.recorder.record(
            AuditEvent.by(actor, action, "SecurityIncident", resource_id=incident.id, **kwargs)
        )
