"""Batch generation API endpoints.

This module implements the REST surface used by the browser client:
- POST /api/generate - Validate a request, create its jobs and batch, start dispatch
- GET /api/status/{job_id} - Poll a single job's status
- GET /api/batches/{batch_id} - Poll every job of a batch at once

Submission returns as soon as the jobs exist; the client polls job status
(e.g. every 2 seconds) until every job is complete or error.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from imagebatch.api.dependencies import get_dispatcher, get_job_store
from imagebatch.api.errors import INTERNAL_ERROR_MESSAGE
from imagebatch.models.job import GenerationMode, GenerationRequest, Job, JobStatus
from imagebatch.services.dispatcher import BatchDispatcher
from imagebatch.store.job_store import JobStore

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["generation"])

MIN_PROMPT_LENGTH = 3
IMAGE_COUNT_RANGE = (1, 10)
CONCURRENCY_RANGE = (1, 5)
TEMPERATURE_RANGE = (0.0, 2.0)


# Request/Response Models


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateRequest(CamelModel):
    """Request model for submitting a batch of image generations."""

    prompt: str = Field(..., description="Text prompt shared by every image in the batch")
    image_count: int = Field(..., description="Number of images to generate (1-10)")
    concurrency: int = Field(..., description="Maximum simultaneous generations (1-5)")
    temperature: float = Field(default=1.0, description="Sampling temperature (0-2)")
    image: Optional[str] = Field(
        default=None, description="Optional reference image as a base64 data URI"
    )
    mode: Optional[GenerationMode] = Field(
        default=None, description="How to use the reference image: edit or reference"
    )

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        if len(v) < MIN_PROMPT_LENGTH:
            raise ValueError(f"Prompt must be at least {MIN_PROMPT_LENGTH} characters")
        return v

    @field_validator("image_count")
    @classmethod
    def validate_image_count(cls, v: int) -> int:
        low, high = IMAGE_COUNT_RANGE
        if not low <= v <= high:
            raise ValueError(f"Image count must be between {low} and {high}")
        return v

    @field_validator("concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        low, high = CONCURRENCY_RANGE
        if not low <= v <= high:
            raise ValueError(f"Concurrency must be between {low} and {high}")
        return v

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        low, high = TEMPERATURE_RANGE
        if not low <= v <= high:
            raise ValueError(f"Temperature must be between {low:g} and {high:g}")
        return v

    @field_validator("image")
    @classmethod
    def normalize_image(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_validator("mode", mode="before")
    @classmethod
    def validate_mode(cls, v):
        if v in (None, ""):
            return None
        try:
            return GenerationMode(v)
        except ValueError:
            raise ValueError("Mode must be 'edit' or 'reference'")

    def to_generation_request(self) -> GenerationRequest:
        return GenerationRequest(
            prompt=self.prompt,
            temperature=self.temperature,
            image=self.image,
            mode=self.mode,
        )


class GenerateResponse(CamelModel):
    """Response model for an accepted batch."""

    batch_id: str
    job_ids: list[str]
    status: JobStatus = JobStatus.PENDING


class JobStatusResponse(CamelModel):
    """Response model for a single job's status.

    image_url is only present for complete jobs, error only for failed ones.
    """

    job_id: str
    status: JobStatus
    image_url: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        return cls(job_id=job.id, status=job.status, image_url=job.image_url, error=job.error)


class BatchStatusResponse(CamelModel):
    """Response model aggregating every job of a batch."""

    batch_id: str
    concurrency: int
    jobs: list[JobStatusResponse]
    counts: dict[str, int] = Field(..., description="Number of jobs per status")
    done: bool = Field(..., description="True once every job is complete or error")


# API Endpoints


@router.post("/generate", response_model=GenerateResponse)
async def submit_batch(
    request: GenerateRequest,
    store: JobStore = Depends(get_job_store),
    dispatcher: BatchDispatcher = Depends(get_dispatcher),
):
    """Create one job per requested image and start generating them.

    Validation happens before anything is stored, so a rejected request
    leaves no partial state. Dispatch runs in the background and this
    endpoint returns without waiting for any image.

    HTTP Status Codes:
        200: Batch accepted
        400: Validation failure
        500: Internal server error
    """
    try:
        job_ids = [store.create_job() for _ in range(request.image_count)]
        batch_id = store.create_batch(job_ids, request.concurrency)

        dispatcher.dispatch(job_ids, request.to_generation_request(), request.concurrency)

        logger.info(
            "batch.submitted",
            batch_id=batch_id,
            image_count=request.image_count,
            concurrency=request.concurrency,
            has_image=request.image is not None,
            mode=request.mode.value if request.mode else None,
        )
        return GenerateResponse(batch_id=batch_id, job_ids=job_ids)

    except Exception as e:
        logger.error(
            "batch.submit_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": INTERNAL_ERROR_MESSAGE},
        )


@router.get(
    "/status/{job_id}",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
)
async def get_job_status(job_id: str, store: JobStore = Depends(get_job_store)):
    """Return the current status of one job.

    HTTP Status Codes:
        200: Job found
        404: Unknown or reclaimed job
    """
    job = store.get_job(job_id)
    if not job:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Job not found")
    return JobStatusResponse.from_job(job)


@router.get(
    "/batches/{batch_id}",
    response_model=BatchStatusResponse,
    response_model_exclude_none=True,
)
async def get_batch_status(batch_id: str, store: JobStore = Depends(get_job_store)):
    """Return the status of every job in a batch, in submission order.

    HTTP Status Codes:
        200: Batch found
        404: Unknown or reclaimed batch
    """
    batch = store.get_batch(batch_id)
    if not batch:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Batch not found")

    jobs = store.get_jobs(batch.job_ids)
    counts = {job_status.value: 0 for job_status in JobStatus}
    for job in jobs:
        counts[job.status.value] += 1

    return BatchStatusResponse(
        batch_id=batch.id,
        concurrency=batch.concurrency,
        jobs=[JobStatusResponse.from_job(job) for job in jobs],
        counts=counts,
        done=all(job.is_terminal for job in jobs),
    )
