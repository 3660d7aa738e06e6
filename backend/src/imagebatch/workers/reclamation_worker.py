"""Reclamation worker for bounding in-memory job storage.

Wakes up every CLEANUP_INTERVAL_SECONDS and deletes jobs and batches older
than JOB_RETENTION_SECONDS, whatever their status.
"""

import asyncio

import structlog

from imagebatch.core.config import Settings
from imagebatch.store.job_store import JobStore, ReclaimResult

logger = structlog.get_logger(__name__)


def reclaim_expired(store: JobStore, retention_seconds: float) -> ReclaimResult:
    """Run one reclamation sweep and log what was removed."""
    result = store.reclaim(retention_seconds)
    if result.jobs_removed or result.batches_removed:
        logger.info(
            "reclamation.completed",
            jobs_removed=result.jobs_removed,
            batches_removed=result.batches_removed,
            retention_seconds=retention_seconds,
        )
    else:
        logger.debug("reclamation.nothing_expired", retention_seconds=retention_seconds)
    return result


async def run_reclamation_worker(store: JobStore, settings: Settings) -> None:
    """Main worker loop for job reclamation.

    Sleeps first, so a fresh process never sweeps at startup.

    Args:
        store: Store to sweep
        settings: Application settings (interval and retention window)
    """
    logger.info(
        "worker.started",
        worker="reclamation",
        interval_seconds=settings.cleanup_interval_seconds,
        retention_seconds=settings.job_retention_seconds,
    )

    try:
        while True:
            await asyncio.sleep(settings.cleanup_interval_seconds)
            reclaim_expired(store, settings.job_retention_seconds)

    except asyncio.CancelledError:
        # Graceful shutdown
        logger.info("worker.stopped", worker="reclamation")
        raise
