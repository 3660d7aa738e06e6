"""pytest fixtures for imagebatch backend tests.

Provides:
- job_store: Function-scoped empty JobStore
- provider: Scripted fake ImageProvider with per-call gates and failures
- dispatcher: BatchDispatcher wired to job_store and provider
- test_settings: Settings isolated from the process environment and .env file
"""

import asyncio
from collections import defaultdict
from typing import Callable

import pytest
import pytest_asyncio

from imagebatch.core.config import Settings
from imagebatch.models.job import GenerationMode, JobStatus
from imagebatch.services.dispatcher import BatchDispatcher
from imagebatch.services.image_generation.base import ImageProvider
from imagebatch.store.job_store import JobStore


class ScriptedImageProvider(ImageProvider):
    """Fake provider whose calls are identified by their start order.

    Calls start in admission order, so call index N belongs to the Nth admitted
    job. With hold=True each call blocks until release(index) is called.
    """

    name = "fake"

    def __init__(self, store: JobStore | None = None, hold: bool = False):
        self.store = store
        self.hold = hold
        self.calls: list[dict] = []
        self.failures: dict[int, Exception] = {}
        self.delays: dict[int, float] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        # Job ids in generating state at the moment each call started
        self.generating_at_start: list[list[str]] = []
        self._gates: dict[int, asyncio.Event] = defaultdict(asyncio.Event)

    def release(self, *indexes: int) -> None:
        for index in indexes:
            self._gates[index].set()

    def release_all(self, count: int) -> None:
        self.release(*range(count))

    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 1.0,
        image: str | None = None,
        mode: GenerationMode | None = None,
    ) -> str:
        index = len(self.calls)
        self.calls.append({"prompt": prompt, "temperature": temperature, "image": image, "mode": mode})
        if self.store is not None:
            self.generating_at_start.append(generating_job_ids(self.store))

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.hold:
                await self._gates[index].wait()
            await asyncio.sleep(self.delays.get(index, 0))
            if index in self.failures:
                raise self.failures[index]
            return f"data:image/png;base64,aW1hZ2Ut{index}"
        finally:
            self.in_flight -= 1


def generating_job_ids(store: JobStore) -> list[str]:
    with store._lock:
        return [job_id for job_id, job in store._jobs.items() if job.status == JobStatus.GENERATING]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture
def job_store() -> JobStore:
    return JobStore()


@pytest.fixture
def provider(job_store) -> ScriptedImageProvider:
    return ScriptedImageProvider(store=job_store)


@pytest.fixture
def held_provider(job_store) -> ScriptedImageProvider:
    return ScriptedImageProvider(store=job_store, hold=True)


@pytest_asyncio.fixture
async def dispatcher(job_store, provider):
    dispatcher = BatchDispatcher(job_store, provider)
    yield dispatcher
    await dispatcher.shutdown()


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    """Settings built from defaults only."""
    for name in ("APP_ENV", "GEMINI_API_KEY", "REPLICATE_API_TOKEN", "IMAGE_PROVIDER"):
        monkeypatch.delenv(name, raising=False)
    return Settings(_env_file=None)  # type: ignore[call-arg]
