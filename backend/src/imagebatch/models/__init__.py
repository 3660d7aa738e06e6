"""In-memory domain entities."""

from imagebatch.models.job import (
    TERMINAL_STATUSES,
    Batch,
    GenerationMode,
    GenerationRequest,
    InvalidStateTransition,
    Job,
    JobStatus,
)

__all__ = [
    "Job",
    "JobStatus",
    "Batch",
    "GenerationMode",
    "GenerationRequest",
    "InvalidStateTransition",
    "TERMINAL_STATUSES",
]
