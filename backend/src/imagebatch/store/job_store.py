"""In-process store for Job and Batch records.

Provides keyed create/read/update access plus age-based reclamation. The store
is the only shared mutable resource: the request handlers create records and
read status, the dispatcher writes job transitions, and the reclamation worker
deletes expired entries.
"""

import threading
import time
from collections import Counter
from typing import Callable, Iterable, NamedTuple

import structlog

from imagebatch.models.job import Batch, InvalidStateTransition, Job, JobStatus

logger = structlog.get_logger(__name__)

_UPDATABLE_FIELDS = frozenset({"status", "image_url", "error"})


class ReclaimResult(NamedTuple):
    jobs_removed: int
    batches_removed: int


class JobStore:
    """Thread-safe in-memory store for jobs and batches.

    Reads return snapshot copies so callers never mutate stored records
    directly. Mutation goes through update_job (a permissive merge) or the
    mark_* methods, which enforce the job state machine.

    Example:
        store = JobStore()
        job_id = store.create_job()
        store.update_job(job_id, status=JobStatus.GENERATING)
        job = store.get_job(job_id)
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """Initialize an empty store.

        Args:
            clock: Source of epoch-second timestamps (injectable for tests)
        """
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._batches: dict[str, Batch] = {}
        self._lock = threading.RLock()

    def create_job(self) -> str:
        """Insert a new pending job and return its identifier."""
        job = Job(created_at=self._clock())
        with self._lock:
            self._jobs[job.id] = job
        return job.id

    def get_job(self, job_id: str) -> Job | None:
        """Return a snapshot of the job, or None if unknown or reclaimed."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job else None

    def get_jobs(self, job_ids: Iterable[str]) -> list[Job]:
        """Return snapshots of the existing jobs among job_ids, in order."""
        with self._lock:
            return [self._jobs[job_id].model_copy() for job_id in job_ids if job_id in self._jobs]

    def update_job(self, job_id: str, **changes) -> bool:
        """Merge status, image_url and/or error into an existing job.

        Unknown ids are ignored (the job may already have been reclaimed), and
        so are jobs that already reached a terminal state. Status and payload
        may be merged freely otherwise, but a job is only completed together
        with its image and a failed job always carries an error message.

        Args:
            job_id: Job identifier
            **changes: Any of status, image_url, error

        Returns:
            True if the update was applied, False if it was skipped

        Raises:
            TypeError: If changes contains a field that cannot be updated
            ValueError: If the update completes the job without an image_url
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot update job fields: {', '.join(sorted(unknown))}")

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.debug("job.update.skipped", job_id=job_id, reason="not_found")
                return False
            if job.is_terminal:
                logger.debug(
                    "job.update.skipped",
                    job_id=job_id,
                    reason="terminal",
                    status=job.status.value,
                )
                return False

            merged = job.model_copy(update=changes)
            merged.status = JobStatus(merged.status)
            # imageUrl belongs to complete jobs only, error to failed ones only
            if merged.status != JobStatus.COMPLETE:
                merged.image_url = None
            if merged.status != JobStatus.ERROR:
                merged.error = None
            if merged.status == JobStatus.COMPLETE and not merged.image_url:
                raise ValueError("image_url is required to complete a job")
            if merged.status == JobStatus.ERROR and not merged.error:
                merged.error = "Unknown error"
            self._jobs[job_id] = merged
            return True

    def mark_generating(self, job_id: str) -> bool:
        """Transition a pending job to generating."""
        return self._transition(job_id, lambda job: job.mark_generating())

    def mark_complete(self, job_id: str, image_url: str) -> bool:
        """Transition a generating job to complete with its image."""
        return self._transition(job_id, lambda job: job.mark_complete(image_url))

    def mark_failed(self, job_id: str, error: str) -> bool:
        """Transition a non-terminal job to error with a message."""
        return self._transition(job_id, lambda job: job.mark_failed(error))

    def _transition(self, job_id: str, apply: Callable[[Job], None]) -> bool:
        """Apply a state-machine transition to a copy and store it.

        Missing jobs and rejected transitions leave the store unchanged.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.debug("job.transition.skipped", job_id=job_id, reason="not_found")
                return False
            updated = job.model_copy()
            try:
                apply(updated)
            except InvalidStateTransition as e:
                logger.warning("job.transition.rejected", job_id=job_id, reason=str(e))
                return False
            self._jobs[job_id] = updated
            return True

    def create_batch(self, job_ids: Iterable[str], concurrency: int) -> str:
        """Store a batch over the given job ids and return its identifier."""
        batch = Batch(job_ids=tuple(job_ids), concurrency=concurrency, created_at=self._clock())
        with self._lock:
            self._batches[batch.id] = batch
        return batch.id

    def get_batch(self, batch_id: str) -> Batch | None:
        """Return the batch, or None if unknown or reclaimed."""
        with self._lock:
            batch = self._batches.get(batch_id)
            return batch.model_copy() if batch else None

    def reclaim(self, max_age_seconds: float) -> ReclaimResult:
        """Delete every job and batch created at or before now - max_age_seconds.

        Runs regardless of job status: pending jobs that were never dispatched
        are evicted too.

        Args:
            max_age_seconds: Retention window in seconds

        Returns:
            Number of jobs and batches removed
        """
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            expired_jobs = [job_id for job_id, job in self._jobs.items() if job.created_at <= cutoff]
            for job_id in expired_jobs:
                del self._jobs[job_id]

            expired_batches = [
                batch_id for batch_id, batch in self._batches.items() if batch.created_at <= cutoff
            ]
            for batch_id in expired_batches:
                del self._batches[batch_id]

        return ReclaimResult(jobs_removed=len(expired_jobs), batches_removed=len(expired_batches))

    def stats(self) -> dict:
        """Return job counts by status and the number of stored batches."""
        with self._lock:
            counts = Counter(job.status.value for job in self._jobs.values())
            batch_count = len(self._batches)
        return {
            "jobs": {status.value: counts.get(status.value, 0) for status in JobStatus},
            "batches": batch_count,
        }
