"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from imagebatch.api.errors import register_exception_handlers
from imagebatch.api.routes import generate
from imagebatch.core.config import Settings, configure_logging
from imagebatch.services.dispatcher import BatchDispatcher
from imagebatch.services.image_generation import create_image_provider
from imagebatch.store.job_store import JobStore
from imagebatch.workers.reclamation_worker import run_reclamation_worker

logger = structlog.get_logger()

RESTART_DELAY = 1  # Fixed 1 second delay between restarts


def create_resilient_worker(
    coro_factory: Callable[[], Awaitable[None]],
    worker_name: str,
    shutdown_event: asyncio.Event,
) -> asyncio.Task:
    """Create a worker with automatic restart on failure.

    Args:
        coro_factory: Zero-argument callable returning a fresh worker coroutine
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        # Cancelled means normal shutdown
        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker loops never return on their own
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            # Check again if shutdown was requested during sleep
            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_factory())
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_factory())
    task.add_done_callback(on_worker_done)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, create job store, provider and dispatcher, start reclamation
    - Shutdown: Stop reclamation, cancel running batches, close provider connections
    """
    settings: Settings = app.state.settings

    configure_logging(settings)

    store = JobStore()
    provider = create_image_provider(settings)
    dispatcher = BatchDispatcher(store, provider, timeout_seconds=settings.provider_timeout_seconds)

    app.state.job_store = store
    app.state.provider = provider
    app.state.dispatcher = dispatcher

    shutdown_event = asyncio.Event()
    reclamation_task = create_resilient_worker(
        lambda: run_reclamation_worker(store, settings), "reclamation", shutdown_event
    )

    logger.info(
        "application.startup",
        provider=provider.name,
        retention_seconds=settings.job_retention_seconds,
        cleanup_interval_seconds=settings.cleanup_interval_seconds,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    reclamation_task.cancel()
    await asyncio.gather(reclamation_task, return_exceptions=True)

    await dispatcher.shutdown()
    await provider.aclose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use instead of loading them from the environment

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Image Batch Backend API",
        description="Batch AI image generation with progressive status polling",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(generate.router)  # Router has prefix="/api" in definition

    @app.get("/health")
    async def health_check():
        """Health check endpoint with job store statistics.

        Returns:
            200: {"status": "healthy", "jobs": {...}, "batches": n, "activeBatches": n}
        """
        stats = app.state.job_store.stats()
        return {
            "status": "healthy",
            "jobs": stats["jobs"],
            "batches": stats["batches"],
            "activeBatches": app.state.dispatcher.active_batches,
        }

    return app


# Create app instance for uvicorn
app = create_app()
