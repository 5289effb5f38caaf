"""
CollabHub - Audit Service

Query surface over the audit log: filtered listing, per-user activity,
retention cleanup and compliance reporting.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from collabhub.api.audit.recorder import AuditRecorder
from collabhub.api.audit.types import AuditAction, AuditEvent
from collabhub.api.db.models import AuditLogEntry, utcnow
from collabhub.api.db.ports import AuditLogFilter, Page, UnitOfWork
from collabhub.api.errors import ValidationError

logger = logging.getLogger(__name__)

# Number of entries returned by get_user_activity
USER_ACTIVITY_LIMIT = 100


class AuditService:
    """Audit log queries and maintenance."""

    def __init__(
        self,
        uow: UnitOfWork,
        recorder: Optional[AuditRecorder] = None,
        retention_days: int = 365,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow = uow
        self.recorder = recorder
        self.retention_days = retention_days
        self.clock = clock

    async def get_logs(
        self,
        filters: Optional[AuditLogFilter] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page[AuditLogEntry]:
        """Filtered, paginated audit entries, newest first."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        entries, total = await self.uow.audit_log.query(filters or AuditLogFilter(), page, limit)
        return Page(items=entries, page=page, limit=limit, total=total)

    async def get_user_activity(self, user_id: UUID, days: int = 30) -> Dict[str, Any]:
        """
        Recent entries for an actor plus a per-action count summary.

        Returns:
            {"entries": [...up to 100 newest...],
             "action_counts": [{"action": str, "count": int}, ...]}
        """
        if days < 1:
            raise ValidationError("days must be positive")

        since = self.clock() - timedelta(days=days)
        entries = await self.uow.audit_log.recent_for_user(user_id, since, USER_ACTIVITY_LIMIT)
        counts = await self.uow.audit_log.action_counts_for_user(user_id, since)
        return {
            "entries": entries,
            "action_counts": [{"action": action, "count": n} for action, n in counts],
        }

    async def cleanup_old_logs(self, retention_days: Optional[int] = None) -> int:
        """
        Delete entries older than the retention window.

        Returns:
            Number of entries removed
        """
        days = self.retention_days if retention_days is None else retention_days
        if days < 1:
            raise ValidationError("Retention window must be at least one day")

        cutoff = self.clock() - timedelta(days=days)
        removed = await self.uow.audit_log.delete_older_than(cutoff)
        await self.uow.commit()

        logger.info(f"Cleaned up {removed} audit logs older than {days} days")
        return removed

    async def generate_compliance_report(
        self,
        start_date: datetime,
        end_date: datetime,
        report_type: str = "GDPR",
        actor: Any = None,
    ) -> Dict[str, Any]:
        """Activity and incident counts for a reporting period."""
        if start_date.tzinfo is None:
            start_date = start_date.replace(tzinfo=timezone.utc)
        if end_date.tzinfo is None:
            end_date = end_date.replace(tzinfo=timezone.utc)
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date")

        log = self.uow.audit_log
        metrics = {
            "data_access_events": await log.count_action_between(
                AuditAction.DATA_ACCESSED.value, start_date, end_date
            ),
            "sensitive_data_access_events": await log.count_action_between(
                AuditAction.SENSITIVE_DATA_ACCESSED.value, start_date, end_date
            ),
            "gdpr_export_requests": await log.count_action_between(
                AuditAction.GDPR_EXPORT_REQUESTED.value, start_date, end_date
            ),
            "gdpr_delete_requests": await log.count_action_between(
                AuditAction.GDPR_DELETE_REQUESTED.value, start_date, end_date
            ),
            "security_incidents": await self.uow.incidents.count_detected_between(
                start_date, end_date
            ),
            "user_creations": await log.count_action_between(
                AuditAction.USER_CREATED.value, start_date, end_date
            ),
            "user_deletions": await log.count_action_between(
                AuditAction.USER_DELETED.value, start_date, end_date
            ),
        }

        report = {
            "report_type": report_type,
            "period": {"start_date": start_date, "end_date": end_date},
            "generated_at": self.clock(),
            "metrics": metrics,
        }

        if self.recorder is not None:
            self.recorder.record(
                AuditEvent.by(
                    actor,
                    AuditAction.COMPLIANCE_REPORT_GENERATED,
                    "Compliance",
                    details={
                        "report_type": report_type,
                        "start_date": start_date.isoformat(),
                        "end_date": end_date.isoformat(),
                    },
                )
            )
        return report
