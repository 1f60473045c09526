"""
Pydantic models and enums for pet dance video jobs.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ── Job Status ───────────────────────────────────────────────────────────────

class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED})

# target status -> statuses a job may be in before moving there
ALLOWED_FROM = {
    JobStatus.QUEUED: frozenset({JobStatus.QUEUED}),
    JobStatus.PROCESSING: frozenset({JobStatus.QUEUED, JobStatus.PROCESSING}),
    JobStatus.SUCCEEDED: frozenset({JobStatus.PROCESSING}),
    JobStatus.FAILED: frozenset({JobStatus.QUEUED, JobStatus.PROCESSING}),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """queued -> processing -> {succeeded | failed}, plus queued -> failed; terminal states never move."""
    return JobStatus(current) in ALLOWED_FROM[JobStatus(target)]


class Provider(str, Enum):
    RUNWAY = "runway"
    REPLICATE = "replicate"
    RUNCOMFY = "runcomfy"


# ── Job Record ───────────────────────────────────────────────────────────────

class Job(BaseModel):
    id: str
    owner_id: str
    status: JobStatus = JobStatus.QUEUED
    input_image_url: str
    dance_style: str
    pet_description: Optional[str] = None
    prompt: Optional[str] = None
    provider: Optional[str] = None
    provider_job_id: Optional[str] = None
    result_url: Optional[str] = None
    error_detail: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── API Request / Response Models ────────────────────────────────────────────

class GenerateRequest(_CamelModel):
    image_url: Optional[str] = Field(None, description="HTTPS URL of the uploaded pet photo")
    dance_style: Optional[str] = Field(None, description="Dance style id, e.g. 'salsa'")
    pet_description: Optional[str] = None


class GenerateResponse(_CamelModel):
    job_id: str
    status: JobStatus


class JobStatusResponse(_CamelModel):
    id: str
    status: JobStatus
    result_url: Optional[str] = None
    error_detail: Optional[str] = None
    dance_style: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        return cls(
            id=job.id,
            status=job.status,
            result_url=job.result_url,
            error_detail=job.error_detail,
            dance_style=job.dance_style,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class DeleteResponse(BaseModel):
    deleted: bool = True
    id: str
