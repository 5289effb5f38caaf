"""
Audit pipeline wiring.

Builds recorder -> detector -> incident manager from settings and holds the
process-wide instance used by the API.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from collabhub.api.audit.breaker import CircuitBreaker
from collabhub.api.audit.detector import AnomalyDetector, DetectionThresholds
from collabhub.api.audit.incidents import IncidentManager
from collabhub.api.audit.recorder import AuditRecorder
from collabhub.api.db.models import utcnow
from collabhub.api.db.ports import UnitOfWorkFactory

logger = logging.getLogger(__name__)


@dataclass
class AuditPipeline:
    """The three cooperating audit components."""

    recorder: AuditRecorder
    detector: AnomalyDetector
    incidents: IncidentManager

    @classmethod
    def build(
        cls,
        uow_factory: UnitOfWorkFactory,
        settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> "AuditPipeline":
        recorder = AuditRecorder(
            uow_factory,
            max_queue_size=settings.AUDIT_QUEUE_MAX_SIZE,
            workers=settings.AUDIT_PIPELINE_WORKERS,
            detection_timeout=settings.AUDIT_DETECTION_TIMEOUT_SEC,
            breaker=CircuitBreaker(
                failure_threshold=settings.AUDIT_BREAKER_FAILURE_THRESHOLD,
                cooldown_seconds=settings.AUDIT_BREAKER_COOLDOWN_SEC,
            ),
            clock=clock,
        )
        incidents = IncidentManager(
            uow_factory,
            recorder=recorder,
            correlation_window_minutes=settings.INCIDENT_CORRELATION_WINDOW_MINUTES,
            clock=clock,
        )
        detector = AnomalyDetector(
            uow_factory,
            incidents,
            thresholds=DetectionThresholds.from_settings(settings),
            clock=clock,
        )
        # Detection runs after each persisted event
        recorder.detector = detector
        return cls(recorder=recorder, detector=detector, incidents=incidents)


# Global pipeline
_pipeline: Optional[AuditPipeline] = None


def get_audit_pipeline() -> AuditPipeline:
    """Get the global audit pipeline, building it on first use."""
    global _pipeline
    if _pipeline is None:
        from collabhub.api.config import settings
        from collabhub.api.db.session import get_uow_factory

        _pipeline = AuditPipeline.build(get_uow_factory(), settings)
        logger.info("Audit pipeline built")
    return _pipeline


def set_audit_pipeline(pipeline: Optional[AuditPipeline]) -> None:
    """Replace the global pipeline (tests, custom wiring)."""
    global _pipeline
    _pipeline = pipeline
