"""Tests for the concurrency-limited BatchDispatcher.

Uses the scripted provider from conftest: call index N is the Nth admitted job,
and held providers block each call until the test releases it.
"""

import asyncio

import pytest

from conftest import ScriptedImageProvider, generating_job_ids, wait_until
from imagebatch.models.job import GenerationMode, GenerationRequest, JobStatus
from imagebatch.services.dispatcher import BatchDispatcher
from imagebatch.services.exceptions import ProviderRateLimitError, ServiceError

REQUEST = GenerationRequest(prompt="a lighthouse at dusk", temperature=0.7)


def create_jobs(store, count: int) -> list[str]:
    return [store.create_job() for _ in range(count)]


def statuses(store, job_ids: list[str]) -> list[JobStatus]:
    return [store.get_job(job_id).status for job_id in job_ids]


async def sample_generating(store, max_seen: list[int], stop: asyncio.Event) -> None:
    while not stop.is_set():
        max_seen[0] = max(max_seen[0], len(generating_job_ids(store)))
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_concurrency_cap_is_never_exceeded(job_store, provider, dispatcher):
    """imageCount=5, concurrency=2: at most 2 generating, all 5 finish."""
    provider.delays = {0: 0.03, 1: 0.01, 2: 0.02, 3: 0.005, 4: 0.01}
    job_ids = create_jobs(job_store, 5)
    max_seen = [0]
    stop = asyncio.Event()
    sampler = asyncio.create_task(sample_generating(job_store, max_seen, stop))

    await asyncio.wait_for(dispatcher.dispatch(job_ids, REQUEST, concurrency=2), timeout=2)
    stop.set()
    await sampler

    assert max_seen[0] <= 2
    assert provider.max_in_flight == 2
    assert all(len(generating) <= 2 for generating in provider.generating_at_start)
    assert statuses(job_store, job_ids) == [JobStatus.COMPLETE] * 5


@pytest.mark.asyncio
async def test_failed_job_does_not_affect_siblings(job_store, provider, dispatcher):
    """Job 3 of 5 fails with 'quota exceeded'; jobs 1, 2, 4, 5 complete."""
    provider.failures = {2: ProviderRateLimitError("quota exceeded")}
    job_ids = create_jobs(job_store, 5)

    await asyncio.wait_for(dispatcher.dispatch(job_ids, REQUEST, concurrency=2), timeout=2)

    failed = job_store.get_job(job_ids[2])
    assert failed.status == JobStatus.ERROR
    assert failed.error == "quota exceeded"
    assert failed.image_url is None

    for job_id in job_ids[:2] + job_ids[3:]:
        job = job_store.get_job(job_id)
        assert job.status == JobStatus.COMPLETE
        assert job.image_url.startswith("data:image/png;base64,")
        assert job.error is None


@pytest.mark.asyncio
async def test_every_job_failing_still_drains_queue(job_store, provider, dispatcher):
    provider.failures = {index: ServiceError(f"failure {index}") for index in range(4)}
    job_ids = create_jobs(job_store, 4)

    await asyncio.wait_for(dispatcher.dispatch(job_ids, REQUEST, concurrency=3), timeout=2)

    assert statuses(job_store, job_ids) == [JobStatus.ERROR] * 4
    assert [job_store.get_job(job_id).error for job_id in job_ids] == [
        "failure 0",
        "failure 1",
        "failure 2",
        "failure 3",
    ]


@pytest.mark.asyncio
async def test_unexpected_exceptions_are_recorded_as_errors(job_store, provider, dispatcher):
    provider.failures = {0: RuntimeError("socket closed"), 1: KeyError()}
    job_ids = create_jobs(job_store, 2)

    await asyncio.wait_for(dispatcher.dispatch(job_ids, REQUEST, concurrency=2), timeout=2)

    assert job_store.get_job(job_ids[0]).error == "socket closed"
    assert job_store.get_job(job_ids[1]).status == JobStatus.ERROR
    assert job_store.get_job(job_ids[1]).error


class EmptyResultProvider(ScriptedImageProvider):
    async def generate(self, prompt: str, **kwargs) -> str:
        await super().generate(prompt, **kwargs)
        return ""


@pytest.mark.asyncio
async def test_empty_provider_result_is_recorded_as_error(job_store):
    dispatcher = BatchDispatcher(job_store, EmptyResultProvider(store=job_store))
    job_ids = create_jobs(job_store, 2)

    await asyncio.wait_for(dispatcher.dispatch(job_ids, REQUEST, concurrency=1), timeout=2)

    assert statuses(job_store, job_ids) == [JobStatus.ERROR] * 2
    assert [job_store.get_job(job_id).error for job_id in job_ids] == [
        "Provider returned no image"
    ] * 2


@pytest.mark.asyncio
async def test_concurrency_one_is_sequential(job_store, provider, dispatcher):
    """concurrency=1, imageCount=3: job1, job2, job3 generate one at a time, in order."""
    job_ids = create_jobs(job_store, 3)

    await asyncio.wait_for(dispatcher.dispatch(job_ids, REQUEST, concurrency=1), timeout=2)

    assert provider.generating_at_start == [[job_ids[0]], [job_ids[1]], [job_ids[2]]]
    assert provider.max_in_flight == 1
    assert statuses(job_store, job_ids) == [JobStatus.COMPLETE] * 3


@pytest.mark.asyncio
async def test_initial_saturation(job_store, held_provider):
    """imageCount=10, concurrency=5: exactly 5 generating before any finishes."""
    dispatcher = BatchDispatcher(job_store, held_provider)
    job_ids = create_jobs(job_store, 10)

    task = dispatcher.dispatch(job_ids, REQUEST, concurrency=5)
    await wait_until(lambda: len(held_provider.calls) == 5)
    await asyncio.sleep(0.01)

    assert len(held_provider.calls) == 5
    assert statuses(job_store, job_ids) == [JobStatus.GENERATING] * 5 + [JobStatus.PENDING] * 5

    held_provider.release_all(10)
    await asyncio.wait_for(task, timeout=2)

    assert statuses(job_store, job_ids) == [JobStatus.COMPLETE] * 10


@pytest.mark.asyncio
async def test_fastest_job_frees_slot_without_head_of_line_blocking(job_store, held_provider):
    dispatcher = BatchDispatcher(job_store, held_provider)
    job_ids = create_jobs(job_store, 3)

    task = dispatcher.dispatch(job_ids, REQUEST, concurrency=2)
    await wait_until(lambda: len(held_provider.calls) == 2)

    # Second job finishes while the first is still running
    held_provider.release(1)
    await wait_until(lambda: len(held_provider.calls) == 3)

    assert statuses(job_store, job_ids) == [
        JobStatus.GENERATING,
        JobStatus.COMPLETE,
        JobStatus.GENERATING,
    ]

    held_provider.release(0, 2)
    await asyncio.wait_for(task, timeout=2)
    assert statuses(job_store, job_ids) == [JobStatus.COMPLETE] * 3


@pytest.mark.asyncio
async def test_concurrency_above_job_count_admits_everything(job_store, held_provider):
    dispatcher = BatchDispatcher(job_store, held_provider)
    job_ids = create_jobs(job_store, 3)

    task = dispatcher.dispatch(job_ids, REQUEST, concurrency=5)
    await wait_until(lambda: len(held_provider.calls) == 3)

    assert statuses(job_store, job_ids) == [JobStatus.GENERATING] * 3

    held_provider.release_all(3)
    await asyncio.wait_for(task, timeout=2)


@pytest.mark.asyncio
async def test_dispatch_returns_before_jobs_finish(job_store, held_provider):
    dispatcher = BatchDispatcher(job_store, held_provider)
    job_ids = create_jobs(job_store, 2)

    task = dispatcher.dispatch(job_ids, REQUEST, concurrency=1)

    assert not task.done()
    assert dispatcher.active_batches == 1
    assert statuses(job_store, job_ids) == [JobStatus.PENDING] * 2

    held_provider.release_all(2)
    await asyncio.wait_for(task, timeout=2)
    await asyncio.sleep(0)
    assert dispatcher.active_batches == 0


@pytest.mark.asyncio
async def test_request_parameters_reach_provider(job_store, provider, dispatcher):
    request = GenerationRequest(
        prompt="make it snow",
        temperature=1.5,
        image="data:image/jpeg;base64,/9j/AAA",
        mode=GenerationMode.EDIT,
    )
    job_ids = create_jobs(job_store, 2)

    await asyncio.wait_for(dispatcher.dispatch(job_ids, request, concurrency=2), timeout=2)

    assert provider.calls == [
        {
            "prompt": "make it snow",
            "temperature": 1.5,
            "image": "data:image/jpeg;base64,/9j/AAA",
            "mode": GenerationMode.EDIT,
        }
    ] * 2


@pytest.mark.asyncio
async def test_empty_batch_finishes_immediately(job_store, provider, dispatcher):
    await asyncio.wait_for(dispatcher.dispatch([], REQUEST, concurrency=2), timeout=1)
    assert provider.calls == []


@pytest.mark.asyncio
async def test_invalid_concurrency_is_rejected(job_store, dispatcher):
    with pytest.raises(ValueError):
        dispatcher.dispatch(create_jobs(job_store, 1), REQUEST, concurrency=0)


@pytest.mark.asyncio
async def test_timeout_marks_job_error_and_frees_slot(job_store, held_provider):
    dispatcher = BatchDispatcher(job_store, held_provider, timeout_seconds=0.05)
    job_ids = create_jobs(job_store, 2)
    # Second call is released up front; the first hangs until the timeout
    held_provider.release(1)

    await asyncio.wait_for(dispatcher.dispatch(job_ids, REQUEST, concurrency=1), timeout=2)

    hung = job_store.get_job(job_ids[0])
    assert hung.status == JobStatus.ERROR
    assert "timed out" in hung.error
    assert job_store.get_job(job_ids[1]).status == JobStatus.COMPLETE


@pytest.mark.asyncio
async def test_job_reclaimed_mid_flight_is_ignored(job_store, held_provider):
    dispatcher = BatchDispatcher(job_store, held_provider)
    job_ids = create_jobs(job_store, 2)

    task = dispatcher.dispatch(job_ids, REQUEST, concurrency=2)
    await wait_until(lambda: len(held_provider.calls) == 2)
    job_store.reclaim(0)

    held_provider.release_all(2)
    await asyncio.wait_for(task, timeout=2)

    assert job_store.get_jobs(job_ids) == []


@pytest.mark.asyncio
async def test_independent_batches_do_not_share_concurrency(job_store, held_provider):
    dispatcher = BatchDispatcher(job_store, held_provider)
    first = create_jobs(job_store, 2)
    second = create_jobs(job_store, 2)

    first_task = dispatcher.dispatch(first, REQUEST, concurrency=1)
    second_task = dispatcher.dispatch(second, REQUEST, concurrency=1)
    await wait_until(lambda: len(held_provider.calls) == 2)

    assert statuses(job_store, [first[0], second[0]]) == [JobStatus.GENERATING] * 2
    assert dispatcher.active_batches == 2

    held_provider.release_all(4)
    await asyncio.wait_for(asyncio.gather(first_task, second_task), timeout=2)


@pytest.mark.asyncio
async def test_shutdown_cancels_running_batches(job_store, held_provider):
    dispatcher = BatchDispatcher(job_store, held_provider)
    job_ids = create_jobs(job_store, 3)

    task = dispatcher.dispatch(job_ids, REQUEST, concurrency=2)
    await wait_until(lambda: len(held_provider.calls) == 2)

    await dispatcher.shutdown()

    assert task.cancelled()
    assert dispatcher.active_batches == 0
    assert held_provider.in_flight == 0
    assert statuses(job_store, job_ids) == [
        JobStatus.GENERATING,
        JobStatus.GENERATING,
        JobStatus.PENDING,
    ]


@pytest.mark.asyncio
async def test_jobs_reclaimed_while_queued_are_not_generated(job_store, held_provider):
    dispatcher = BatchDispatcher(job_store, held_provider)
    job_ids = create_jobs(job_store, 4)

    task = dispatcher.dispatch(job_ids, REQUEST, concurrency=1)
    await wait_until(lambda: len(held_provider.calls) == 1)
    job_store.reclaim(0)

    held_provider.release(0)
    await asyncio.wait_for(task, timeout=2)

    assert len(held_provider.calls) == 1
    assert job_store.get_jobs(job_ids) == []
    assert dispatcher.active_batches == 0
