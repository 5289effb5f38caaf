"""
Background Workers

Long-running tasks owned by the application lifespan:

1. The audit pipeline (queue consumers persisting events and running
   anomaly detection)
2. Audit log retention (periodic cleanup of entries past the retention window)
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from collabhub.api.audit.pipeline import AuditPipeline
from collabhub.api.audit.service import AuditService
from collabhub.api.db.ports import UnitOfWorkFactory

logger = logging.getLogger(__name__)


@dataclass
class WorkerStats:
    """Statistics for a background worker."""
    name: str
    started_at: datetime
    last_run_at: Optional[datetime] = None
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    last_result: Optional[int] = None


class RetentionWorker:
    """
    Deletes audit log entries older than the retention window.

    Runs every ``interval_seconds``; a failed run is logged and counted and
    the next run happens on schedule.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        retention_days: int = 365,
        interval_seconds: float = 24 * 3600,
    ):
        self.uow_factory = uow_factory
        self.retention_days = retention_days
        self.interval = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stats = WorkerStats(
            name="audit_retention",
            started_at=datetime.now(timezone.utc),
        )

    async def start(self) -> None:
        """Start the retention worker."""
        if self._running:
            return

        self._running = True
        self._stats.started_at = datetime.now(timezone.utc)
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Audit retention worker started "
            f"(every {self.interval}s, keeping {self.retention_days} days)"
        )

    async def stop(self) -> None:
        """Stop the retention worker."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Audit retention worker stopped")

    async def _run_loop(self) -> None:
        """Main worker loop."""
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Audit retention error: {e}")
                self._stats.error_count += 1
                self._stats.last_error = str(e)

    async def run_once(self) -> int:
        """Run one cleanup pass. Returns the number of entries removed."""
        async with self.uow_factory() as uow:
            removed = await AuditService(uow, retention_days=self.retention_days).cleanup_old_logs()

        self._stats.run_count += 1
        self._stats.last_run_at = datetime.now(timezone.utc)
        self._stats.last_result = removed
        return removed

    def get_stats(self) -> WorkerStats:
        """Get worker statistics."""
        return self._stats


class BackgroundWorkerManager:
    """
    Manages all background workers.

    Provides unified start/stop and status monitoring.
    """

    def __init__(self, pipeline: AuditPipeline, retention: RetentionWorker):
        self.pipeline = pipeline
        self.retention = retention

        self._started = False

    async def start_all(self) -> None:
        """Start all background workers."""
        if self._started:
            return

        await self.pipeline.recorder.start()
        await self.retention.start()

        self._started = True
        logger.info("All background workers started")

    async def stop_all(self) -> None:
        """Stop all background workers. Queued audit events are drained first."""
        await self.retention.stop()
        await self.pipeline.recorder.stop()

        self._started = False
        logger.info("All background workers stopped")

    def get_all_stats(self) -> Dict[str, Any]:
        """Get statistics for all workers."""
        return {
            "audit_pipeline": self.pipeline.recorder.get_stats(),
            "audit_retention": asdict(self.retention.get_stats()),
        }


# Global worker manager
_worker_manager: Optional[BackgroundWorkerManager] = None


def get_worker_manager() -> BackgroundWorkerManager:
    """Get the global worker manager."""
    global _worker_manager
    if _worker_manager is None:
        from collabhub.api.audit.pipeline import get_audit_pipeline
        from collabhub.api.config import settings
        from collabhub.api.db.session import get_uow_factory

        _worker_manager = BackgroundWorkerManager(
            get_audit_pipeline(),
            RetentionWorker(
                get_uow_factory(),
                retention_days=settings.AUDIT_LOG_RETENTION_DAYS,
                interval_seconds=settings.AUDIT_RETENTION_INTERVAL_HOURS * 3600,
            ),
        )
    return _worker_manager


async def init_background_workers() -> None:
    """Initialize and start all background workers."""
    manager = get_worker_manager()
    await manager.start_all()


async def close_background_workers() -> None:
    """Stop all background workers."""
    global _worker_manager
    if _worker_manager:
        await _worker_manager.stop_all()
        _worker_manager = None
