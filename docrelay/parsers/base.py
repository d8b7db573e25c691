"""Parser backend interface."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from docrelay.parsers.models import ConversionJob, ParseOutput, PollResult


@runtime_checkable
class DocumentParser(Protocol):
    """A remote document-understanding backend.

    Backends are selected by tag, not by inheritance; each one implements
    the same three calls and returns the same ParseOutput shape.
    """

    name: str

    async def submit(self, source: bytes, file_name: str) -> str:
        """Start a conversion and return the backend job id."""
        ...

    async def poll(self, job_id: str) -> PollResult:
        """Query the job status once."""
        ...

    async def fetch(self, job: ConversionJob, workdir: Path) -> ParseOutput:
        """Retrieve the markdown for a succeeded job.

        *workdir* is a scratch directory owned by the caller; backends may
        write into it but never delete it.
        """
        ...

    async def aclose(self) -> None:
        """Release network clients held by the backend."""
        ...
