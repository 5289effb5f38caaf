"""Shared services for the CollabHub API."""

from collabhub.api.services.background_tasks import (
    BackgroundWorkerManager,
    RetentionWorker,
    WorkerStats,
    close_background_workers,
    get_worker_manager,
    init_background_workers,
)

__all__ = [
    "BackgroundWorkerManager",
    "RetentionWorker",
    "WorkerStats",
    "close_background_workers",
    "get_worker_manager",
    "init_background_workers",
]
