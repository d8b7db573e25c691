"""Exception taxonomy for the conversion pipeline."""

from __future__ import annotations


class DocRelayError(Exception):
    """Base class for every error raised by docrelay."""


class InvalidDocumentError(DocRelayError):
    """The uploaded document was rejected before reaching a backend."""


class ParserError(DocRelayError):
    """A parsing backend failed at some stage of the job lifecycle.

    Carries enough context (backend, job id, attempt count) for a caller
    to diagnose the failure without reading logs. ``retryable`` marks
    transport-level failures that a caller may resubmit; the core never
    retries on its own.
    """

    def __init__(
        self,
        message: str,
        *,
        backend: str,
        job_id: str | None = None,
        attempts: int | None = None,
        retryable: bool = False,
    ) -> None:
        self.backend = backend
        self.job_id = job_id
        self.attempts = attempts
        self.retryable = retryable
        self.detail = message
        context = [f"backend={backend}"]
        if job_id:
            context.append(f"job_id={job_id}")
        if attempts is not None:
            context.append(f"attempts={attempts}")
        super().__init__(f"{message} ({', '.join(context)})")


class SubmissionError(ParserError):
    """The backend rejected the submit request or returned no job id."""


class PollError(ParserError):
    """The status query itself failed (transport error, malformed reply)."""


class ConversionFailedError(ParserError):
    """The backend reported that conversion failed."""


class ConversionTimeoutError(ParserError):
    """Polling reached max_attempts without a terminal backend status."""


class FetchError(ParserError):
    """Result retrieval failed after the backend reported success."""


class MissingOutputError(FetchError):
    """The result archive contained no markdown file."""


class ImageResolutionError(DocRelayError):
    """A single image could not be downloaded, read, or uploaded."""

    def __init__(self, target: str, reason: str) -> None:
        self.target = target
        self.reason = reason
        super().__init__(f"could not resolve image {target!r}: {reason}")


class StorageError(DocRelayError):
    """A media store write failed."""

    def __init__(self, store: str, message: str, retryable: bool = False) -> None:
        self.store = store
        self.retryable = retryable
        super().__init__(f"{store}: {message}")
