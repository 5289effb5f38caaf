"""
CollabHub - Audit Recorder
==========================

Best-effort, non-blocking audit recording.

``record()`` only enqueues; background workers persist each event and then
run anomaly detection against the persisted log. Nothing in this module
raises to the code that handed it an event: persistence failures, a full
queue, detector errors and detector timeouts are logged and counted.

Features:
- Bounded queue (events are dropped with a warning when it is full)
- N worker tasks
- Per-event detection timeout
- Circuit breaker around detection so a failing store is not hammered
- ``flush()`` to wait until everything queued so far has been processed
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from collabhub.api.audit.breaker import CircuitBreaker
from collabhub.api.audit.types import AuditEvent, AuditOutcome
from collabhub.api.db.models import AuditLogEntry, utcnow
from collabhub.api.db.ports import UnitOfWorkFactory

logger = logging.getLogger(__name__)


class EventDetector(Protocol):
    """Anything that can evaluate a persisted event for anomalies."""

    async def evaluate(self, event: AuditEvent) -> Any: ...


class AuditRecorder:
    """
    Queue-backed audit recorder.

    Example:
        recorder = AuditRecorder(uow_factory, workers=2)
        await recorder.start()

        recorder.record(AuditEvent(
            action=AuditAction.ROLE_ASSIGNED,
            resource="User",
            user_id=admin_id,
            resource_id=str(target_id),
        ))
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        detector: Optional[EventDetector] = None,
        max_queue_size: int = 10000,
        workers: int = 2,
        detection_timeout: float = 5.0,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow_factory = uow_factory
        self.detector = detector
        self.detection_timeout = detection_timeout
        self.breaker = breaker or CircuitBreaker()
        self.clock = clock

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._worker_count = max(1, workers)
        self._workers: List[asyncio.Task] = []
        self._running = False
        self._stats = {
            "events_enqueued": 0,
            "events_dropped": 0,
            "events_persisted": 0,
            "persist_failures": 0,
            "detections_run": 0,
            "detection_failures": 0,
            "detection_timeouts": 0,
            "detections_skipped": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------
    # Caller-facing API
    # ------------------------------------------------------------

    def record(self, event: AuditEvent) -> None:
        """
        Hand an event to the pipeline. Never raises, never blocks.

        The event is stamped with the current time if it carries none, so
        queue latency does not shift it across detection windows.
        """
        try:
            if event.occurred_at is None:
                event.occurred_at = self.clock()
            self._queue.put_nowait(event)
            self._stats["events_enqueued"] += 1
        except asyncio.QueueFull:
            self._stats["events_dropped"] += 1
            logger.warning(
                f"Audit queue full, dropping {event.action} on {event.target} "
                f"by {event.user_id or 'anonymous'}"
            )
        except Exception as e:
            self._stats["events_dropped"] += 1
            logger.error(f"Failed to enqueue audit event {event.action}: {e}")

    async def flush(self) -> None:
        """Wait until every event queued so far has been processed."""
        if self._running:
            await self._queue.join()
            return

        # No workers: drain inline
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._process(event)
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    async def start(self) -> None:
        """Start the worker tasks."""
        if self._running:
            return

        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"audit-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info(f"Audit recorder started with {self._worker_count} workers")

    async def stop(self, drain_timeout: float = 10.0) -> None:
        """Drain the queue (bounded by ``drain_timeout``) and stop the workers."""
        if not self._running:
            return

        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Audit recorder stopping with {self._queue.qsize()} events unprocessed"
            )

        self._running = False
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Audit recorder stopped")

    async def _worker(self, index: int) -> None:
        """Background worker for processing events."""
        while self._running:
            event = await self._queue.get()
            try:
                await self._process(event)
            except Exception as e:
                logger.error(f"Audit worker {index} error: {e}")
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------

    async def _process(self, event: AuditEvent) -> None:
        await self._persist(event)
        await self._detect(event)

    async def _persist(self, event: AuditEvent) -> bool:
        try:
            async with self.uow_factory() as uow:
                await uow.audit_log.add(
                    AuditLogEntry(
                        user_id=event.user_id,
                        action=event.action,
                        resource=event.resource,
                        resource_id=event.resource_id,
                        details=event.details or None,
                        ip_address=event.ip_address,
                        user_agent=event.user_agent,
                        status=event.status,
                        error_message=event.error_message,
                        duration_ms=event.duration_ms,
                        created_at=event.occurred_at or self.clock(),
                    )
                )
        except Exception as e:
            self._stats["persist_failures"] += 1
            logger.error(
                f"Failed to persist audit event {event.action} on {event.target}: {e}"
            )
            return False

        self._stats["events_persisted"] += 1
        message = (
            f"AUDIT: {event.action} {event.target} "
            f"by {event.user_id or 'anonymous'} [{event.status.value}]"
        )
        if event.status == AuditOutcome.SUCCESS:
            logger.info(message)
        else:
            logger.warning(message)
        return True

    async def _detect(self, event: AuditEvent) -> None:
        if self.detector is None:
            return

        if not self.breaker.can_proceed():
            self._stats["detections_skipped"] += 1
            logger.debug(f"Detection skipped for {event.action}: circuit open")
            return

        self._stats["detections_run"] += 1
        try:
            await asyncio.wait_for(
                self.detector.evaluate(event), timeout=self.detection_timeout
            )
        except asyncio.TimeoutError:
            self._stats["detection_timeouts"] += 1
            self.breaker.record_failure()
            logger.warning(
                f"Anomaly detection timed out after {self.detection_timeout}s "
                f"for {event.action} by {event.user_id}"
            )
        except Exception as e:
            self._stats["detection_failures"] += 1
            self.breaker.record_failure()
            logger.error(f"Anomaly detection failed for {event.action}: {e}")
        else:
            self.breaker.record_success()

    def get_stats(self) -> Dict[str, Any]:
        """Get recorder statistics."""
        return {
            **self._stats,
            "queue_size": self._queue.qsize(),
            "workers": len(self._workers),
            "running": self._running,
            "breaker": self.breaker.get_status(),
        }
