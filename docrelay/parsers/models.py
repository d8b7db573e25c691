"""Pydantic models for the parser job lifecycle."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class JobState(str, Enum):
    """Lifecycle states for a conversion job."""

    submitted = "submitted"
    polling = "polling"
    succeeded = "succeeded"
    failed = "failed"
    timed_out = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in (JobState.succeeded, JobState.failed, JobState.timed_out)


class PollStatus(str, Enum):
    """Normalized backend status reported by a single poll."""

    running = "running"
    success = "success"
    failed = "failed"


class PollResult(BaseModel):
    """One status query's answer, normalized across backends."""

    status: PollStatus
    message: str | None = None
    # set by backends that hand back a result location with the final status
    result_url: str | None = None
    extracted_pages: int | None = None
    total_pages: int | None = None


class ConversionJob(BaseModel):
    """One in-flight conversion.

    Mutable: state, attempts and last_poll change while the job is polled.
    """

    job_id: str = Field(min_length=1)
    backend: str
    state: JobState = JobState.submitted
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(gt=0)
    last_poll: PollResult | None = None

    @field_validator("job_id")
    @classmethod
    def validate_job_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("job_id cannot be empty or whitespace")
        return v


class ParseOutput(BaseModel):
    """What every backend hands back after a successful fetch."""

    markdown: str
    # extraction directory for archive-based backends; None otherwise
    media_root: Path | None = None
    # when set, only absolute URLs matching it are relocated
    remote_url_pattern: str | None = None
