"""Submit / poll / fetch state machine shared by every parser backend."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from docrelay.config.models import PollingConfig
from docrelay.errors import ConversionFailedError, ConversionTimeoutError, FetchError, ParserError
from docrelay.parsers.base import DocumentParser
from docrelay.parsers.models import ConversionJob, JobState, ParseOutput, PollStatus

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class JobRunner:
    """Drives one DocumentParser through submit -> poll -> fetch.

    The delay between polls goes through *sleep* (``asyncio.sleep`` by
    default), so cancelling the calling task interrupts the wait at once
    and tests can run the loop without real waiting.
    """

    def __init__(
        self,
        parser: DocumentParser,
        polling: PollingConfig,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.parser = parser
        self.polling = polling
        self._sleep = sleep

    async def submit(self, source: bytes, file_name: str) -> ConversionJob:
        job_id = await self.parser.submit(source, file_name)
        job = ConversionJob(
            job_id=job_id,
            backend=self.parser.name,
            max_attempts=self.polling.max_attempts,
        )
        logger.info("submitted %s to %s as job %s", file_name, self.parser.name, job_id)
        return job

    async def wait(self, job: ConversionJob) -> ConversionJob:
        """Poll until the job reaches a terminal state.

        Sleeps between polls only, never before the first or after the last.
        Raises ConversionFailedError or ConversionTimeoutError; returns the
        job in the succeeded state otherwise.
        """
        if job.state.terminal:
            raise ValueError(f"job {job.job_id} is already {job.state.value}")

        job.state = JobState.polling
        interval = self.polling.interval_ms / 1000

        while True:
            result = await self.parser.poll(job.job_id)
            job.attempts += 1
            job.last_poll = result

            if result.status is PollStatus.success:
                job.state = JobState.succeeded
                logger.info("job %s succeeded after %d poll(s)", job.job_id, job.attempts)
                return job

            if result.status is PollStatus.failed:
                job.state = JobState.failed
                raise ConversionFailedError(
                    f"conversion failed: {result.message or 'no detail from backend'}",
                    backend=job.backend,
                    job_id=job.job_id,
                    attempts=job.attempts,
                )

            if result.total_pages:
                logger.info(
                    "job %s progress %s/%s pages",
                    job.job_id, result.extracted_pages or 0, result.total_pages,
                )
            else:
                logger.debug("job %s still running (poll %d)", job.job_id, job.attempts)

            if job.attempts >= job.max_attempts:
                job.state = JobState.timed_out
                raise ConversionTimeoutError(
                    f"no terminal status after {job.attempts} polls",
                    backend=job.backend,
                    job_id=job.job_id,
                    attempts=job.attempts,
                )

            await self._sleep(interval)

    async def fetch(self, job: ConversionJob, workdir: Path) -> ParseOutput:
        if job.state is not JobState.succeeded:
            raise ValueError(f"cannot fetch job {job.job_id} in state {job.state.value}")
        try:
            return await self.parser.fetch(job, workdir)
        except ParserError:
            raise
        except (OSError, UnicodeDecodeError) as e:
            raise FetchError(
                f"result retrieval failed: {e}",
                backend=job.backend,
                job_id=job.job_id,
                attempts=job.attempts,
            ) from e

    async def run(self, source: bytes, file_name: str, workdir: Path) -> tuple[ConversionJob, ParseOutput]:
        job = await self.submit(source, file_name)
        await self.wait(job)
        output = await self.fetch(job, workdir)
        return job, output
