"""FastAPI dependency injection functions.

Components live in app.state (created by the application lifespan, or
injected directly by tests) so each app instance owns its own store.
"""

from fastapi import Request

from imagebatch.core.config import Settings
from imagebatch.services.dispatcher import BatchDispatcher
from imagebatch.store.job_store import JobStore


def get_settings(request: Request) -> Settings:
    """Get the settings instance the application was created with."""
    return request.app.state.settings


def get_job_store(request: Request) -> JobStore:
    """Get the JobStore from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(store: JobStore = Depends(get_job_store)):
        ...     job = store.get_job(job_id)
    """
    return request.app.state.job_store


def get_dispatcher(request: Request) -> BatchDispatcher:
    """Get the BatchDispatcher from app state."""
    return request.app.state.dispatcher
