"""Batch dispatcher for concurrency-limited image generation.

Drives every job of a batch through the image provider with at most
`concurrency` provider calls in flight. Jobs are admitted in submission order;
whichever in-flight call finishes first frees its slot for the next queued job,
so a slow job never holds back faster siblings.

Every outcome is written to the JobStore. A failing job is recorded as
`error` and never aborts or delays the rest of the batch.
"""

import asyncio
import time
from collections import deque
from typing import Sequence

import structlog

from imagebatch.models.job import GenerationRequest, JobStatus
from imagebatch.services.exceptions import ProviderResponseError, ProviderTimeoutError
from imagebatch.services.image_generation.base import ImageProvider
from imagebatch.store.job_store import JobStore

logger = structlog.get_logger(__name__)


class BatchDispatcher:
    """Fire-and-forget executor for batches of generation jobs.

    Example:
        dispatcher = BatchDispatcher(store, provider)
        dispatcher.dispatch(job_ids, GenerationRequest(prompt="a red fox"), concurrency=2)
        # returns immediately; poll store.get_job(job_id) for progress
    """

    def __init__(
        self,
        store: JobStore,
        provider: ImageProvider,
        timeout_seconds: float | None = None,
    ):
        """Initialize dispatcher.

        Args:
            store: Store receiving every job transition
            provider: Image provider invoked once per job
            timeout_seconds: Per-call limit; None lets calls run indefinitely
        """
        self.store = store
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        # Strong references so running batches are not garbage-collected
        self._batches: set[asyncio.Task] = set()

    @property
    def active_batches(self) -> int:
        return len(self._batches)

    def dispatch(
        self,
        job_ids: Sequence[str],
        request: GenerationRequest,
        concurrency: int,
    ) -> asyncio.Task:
        """Start processing a batch in the background.

        Must be called from a running event loop. The returned task is for
        bookkeeping only; callers are not expected to await it.

        Args:
            job_ids: Jobs to process, admitted in this order
            request: Generation parameters shared by all jobs
            concurrency: Maximum number of jobs generating at once

        Returns:
            Task running the batch

        Raises:
            ValueError: If concurrency is less than 1
        """
        if concurrency < 1:
            raise ValueError(f"Concurrency must be at least 1, got {concurrency}")

        task = asyncio.create_task(self.run(list(job_ids), request, concurrency))
        self._batches.add(task)
        task.add_done_callback(self._on_batch_done)
        return task

    def _on_batch_done(self, task: asyncio.Task) -> None:
        self._batches.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(
                "batch.dispatch.crashed",
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=exc,
            )

    async def run(
        self,
        job_ids: list[str],
        request: GenerationRequest,
        concurrency: int,
    ) -> None:
        """Process job_ids to completion with at most `concurrency` in flight.

        Workflow:
        1. Admit jobs from the front of the queue until the active set is full
        2. Mark each admitted job generating and start its provider call
        3. Wait until any one active call finishes
        4. Drop finished calls from the active set (they record their own outcome)
        5. Repeat until the queue and the active set are both empty
        """
        start_time = time.time()
        queue = deque(job_ids)
        active: set[asyncio.Task] = set()

        logger.info(
            "batch.dispatch.started",
            job_count=len(job_ids),
            concurrency=concurrency,
            provider=self.provider.name,
        )

        try:
            while queue or active:
                while queue and len(active) < concurrency:
                    job_id = queue.popleft()
                    if not self.store.mark_generating(job_id):
                        # Reclaimed (or otherwise settled) while queued
                        logger.info("job.generation.skipped", job_id=job_id)
                        continue
                    active.add(asyncio.create_task(self._process_job(job_id, request)))

                if not active:
                    continue
                _, active = await asyncio.wait(active, return_when=asyncio.FIRST_COMPLETED)

        except asyncio.CancelledError:
            # Shutdown: abandon in-flight calls; their jobs stay generating
            for task in active:
                task.cancel()
            await asyncio.gather(*active, return_exceptions=True)
            logger.info("batch.dispatch.cancelled", in_flight=len(active), queued=len(queue))
            raise

        jobs = self.store.get_jobs(job_ids)
        logger.info(
            "batch.dispatch.completed",
            job_count=len(job_ids),
            complete=sum(1 for job in jobs if job.status == JobStatus.COMPLETE),
            failed=sum(1 for job in jobs if job.status == JobStatus.ERROR),
            duration_seconds=time.time() - start_time,
        )

    async def _process_job(self, job_id: str, request: GenerationRequest) -> None:
        """Run one provider call and record its outcome.

        Every Exception is converted into an `error` transition on the job.
        """
        start_time = time.time()
        logger.info("job.generation.started", job_id=job_id)

        try:
            image_url = await self._generate(request)
            if not image_url:
                raise ProviderResponseError("Provider returned no image")
        except Exception as e:
            self.store.mark_failed(job_id, str(e) or type(e).__name__)
            logger.error(
                "job.generation.failed",
                job_id=job_id,
                error_type=type(e).__name__,
                error_message=str(e),
                duration_seconds=time.time() - start_time,
            )
            return

        self.store.mark_complete(job_id, image_url)
        logger.info(
            "job.generation.succeeded",
            job_id=job_id,
            duration_seconds=time.time() - start_time,
        )

    async def _generate(self, request: GenerationRequest) -> str:
        call = self.provider.generate(
            request.prompt,
            temperature=request.temperature,
            image=request.image,
            mode=request.mode,
        )
        if self.timeout_seconds is None:
            return await call

        try:
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"Image generation timed out after {self.timeout_seconds:g} seconds"
            ) from e

    async def shutdown(self) -> None:
        """Cancel every running batch and wait for them to stop."""
        batches = list(self._batches)
        for task in batches:
            task.cancel()
        await asyncio.gather(*batches, return_exceptions=True)
        if batches:
            logger.info("dispatcher.shutdown", cancelled_batches=len(batches))
