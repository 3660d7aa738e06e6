"""Job and Batch entities - in-memory records for batch image generation."""

import time
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETE, JobStatus.ERROR})


class GenerationMode(str, Enum):
    """How the provider should use an optional reference image."""

    EDIT = "edit"
    REFERENCE = "reference"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


def _new_id() -> str:
    return str(uuid4())


class Job(BaseModel):
    """Job is one unit of work producing a single generated image."""

    id: str = Field(default_factory=_new_id)
    status: JobStatus = JobStatus.PENDING
    image_url: Optional[str] = None
    error: Optional[str] = None
    created_at: float = Field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_generating(self) -> None:
        """Transition from pending to generating.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != JobStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark generating from {self.status.value}. Job must be in pending state."
            )
        self.status = JobStatus.GENERATING

    def mark_complete(self, image_url: str) -> None:
        """Transition from generating to complete.

        Args:
            image_url: Generated image as a data URI

        Raises:
            InvalidStateTransition: If current status is not generating
            ValueError: If image_url is empty
        """
        if self.status != JobStatus.GENERATING:
            raise InvalidStateTransition(
                f"Cannot mark complete from {self.status.value}. "
                "Job must be in generating state."
            )
        if not image_url:
            raise ValueError("image_url is required")
        self.image_url = image_url
        self.error = None
        self.status = JobStatus.COMPLETE

    def mark_failed(self, error: str) -> None:
        """Transition from any non-terminal state to error.

        Args:
            error: Human-readable failure description

        Raises:
            InvalidStateTransition: If current status is already terminal (complete/error)
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.error = error or "Unknown error"
        self.image_url = None
        self.status = JobStatus.ERROR


class Batch(BaseModel):
    """Batch groups jobs submitted together under one concurrency limit.

    Jobs hold no back-reference to their batch; the batch owns them by id.
    """

    id: str = Field(default_factory=_new_id)
    job_ids: tuple[str, ...]
    concurrency: int = Field(ge=1)
    created_at: float = Field(default_factory=time.time)


class GenerationRequest(BaseModel):
    """Parameters shared by every job of a batch."""

    prompt: str
    temperature: float = 1.0
    image: Optional[str] = None
    mode: Optional[GenerationMode] = None
