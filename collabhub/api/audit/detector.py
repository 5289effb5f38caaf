"""
CollabHub - Anomaly Detector

Stateless count-over-rolling-window rules evaluated against the persisted
audit log after each event:

1. Brute force: failed logins per actor
2. Excessive sensitive access: SENSITIVE_DATA_ACCESSED per actor
3. Multi-origin access: distinct origin addresses per actor

A breach becomes an ``IncidentCandidate`` handed to the incident manager,
which deduplicates it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from collabhub.api.audit.incidents import IncidentManager
from collabhub.api.audit.types import (
    AuditAction,
    AuditEvent,
    IncidentCandidate,
    IncidentSeverity,
    IncidentType,
)
from collabhub.api.db.models import SecurityIncident, utcnow
from collabhub.api.db.ports import UnitOfWorkFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionThresholds:
    """Detection thresholds and windows (minutes)."""

    brute_force_threshold: int = 5
    brute_force_window: int = 15
    sensitive_access_threshold: int = 50
    sensitive_access_window: int = 60
    multi_origin_threshold: int = 5
    multi_origin_window: int = 30

    @classmethod
    def from_settings(cls, settings) -> "DetectionThresholds":
        return cls(
            brute_force_threshold=settings.BRUTE_FORCE_THRESHOLD,
            brute_force_window=settings.BRUTE_FORCE_WINDOW_MINUTES,
            sensitive_access_threshold=settings.SENSITIVE_ACCESS_THRESHOLD,
            sensitive_access_window=settings.SENSITIVE_ACCESS_WINDOW_MINUTES,
            multi_origin_threshold=settings.MULTI_ORIGIN_THRESHOLD,
            multi_origin_window=settings.MULTI_ORIGIN_WINDOW_MINUTES,
        )


class AnomalyDetector:
    """Evaluates audit events against the detection rules."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        incidents: IncidentManager,
        thresholds: Optional[DetectionThresholds] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow_factory = uow_factory
        self.incidents = incidents
        self.thresholds = thresholds or DetectionThresholds()
        self.clock = clock

    async def evaluate(self, event: AuditEvent) -> List[SecurityIncident]:
        """
        Run every applicable rule for ``event``.

        Returns:
            Incidents created or merged into by this evaluation
        """
        if event.user_id is None:
            return []

        candidates: List[IncidentCandidate] = []
        for rule in (self._brute_force, self._sensitive_access, self._multi_origin):
            candidate = await rule(event)
            if candidate is not None:
                candidates.append(candidate)

        raised = []
        for candidate in candidates:
            raised.append(await self.incidents.create_or_merge(candidate))
        return raised

    def _since(self, minutes: int) -> datetime:
        return self.clock() - timedelta(minutes=minutes)

    async def _brute_force(self, event: AuditEvent) -> Optional[IncidentCandidate]:
        if event.action != AuditAction.LOGIN_FAILED.value:
            return None

        t = self.thresholds
        async with self.uow_factory() as uow:
            failures = await uow.audit_log.count_actions_since(
                event.user_id, AuditAction.LOGIN_FAILED.value, self._since(t.brute_force_window)
            )

        if failures < t.brute_force_threshold:
            return None

        logger.warning(f"Brute force threshold reached for user {event.user_id}: {failures}")
        return IncidentCandidate(
            type=IncidentType.BRUTE_FORCE,
            severity=IncidentSeverity.HIGH,
            title="Multiple failed login attempts detected",
            description=(
                f"User {event.user_id} has {failures} failed login attempts in the last "
                f"{t.brute_force_window} minutes from IP {event.ip_address or 'unknown'}"
            ),
            affected_users=[event.user_id],
        )

    async def _sensitive_access(self, event: AuditEvent) -> Optional[IncidentCandidate]:
        if event.action != AuditAction.SENSITIVE_DATA_ACCESSED.value:
            return None

        t = self.thresholds
        async with self.uow_factory() as uow:
            accesses = await uow.audit_log.count_actions_since(
                event.user_id,
                AuditAction.SENSITIVE_DATA_ACCESSED.value,
                self._since(t.sensitive_access_window),
            )

        if accesses < t.sensitive_access_threshold:
            return None

        return IncidentCandidate(
            type=IncidentType.SUSPICIOUS_ACTIVITY,
            severity=IncidentSeverity.MEDIUM,
            title="Unusual data access pattern detected",
            description=(
                f"User {event.user_id} has accessed sensitive data {accesses} times "
                f"in the last {t.sensitive_access_window} minutes"
            ),
            affected_users=[event.user_id],
        )

    async def _multi_origin(self, event: AuditEvent) -> Optional[IncidentCandidate]:
        t = self.thresholds
        async with self.uow_factory() as uow:
            origins = await uow.audit_log.count_distinct_origins_since(
                event.user_id, self._since(t.multi_origin_window)
            )

        if origins < t.multi_origin_threshold:
            return None

        return IncidentCandidate(
            type=IncidentType.SUSPICIOUS_ACTIVITY,
            severity=IncidentSeverity.MEDIUM,
            title="Multiple IP addresses detected",
            description=(
                f"User {event.user_id} has been active from {origins} different IP "
                f"addresses in the last {t.multi_origin_window} minutes"
            ),
            affected_users=[event.user_id],
        )
