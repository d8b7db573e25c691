"""MinerU parser: pre-signed upload, batch status polling, zipped results."""

from __future__ import annotations

import asyncio
import logging
import re
import zipfile
from pathlib import Path

import httpx

from docrelay.config.models import MinerUParserConfig
from docrelay.errors import FetchError, MissingOutputError, PollError, SubmissionError
from docrelay.parsers.archive import extract_archive, find_markdown
from docrelay.parsers.models import ConversionJob, ParseOutput, PollResult, PollStatus
from docrelay.transport import json_body, send

logger = logging.getLogger(__name__)

_SAFE_ID_RE = re.compile(r"[^\w\-]")

# truncated members raise EOFError, unsupported compression NotImplementedError
_ARCHIVE_ERRORS = (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError, EOFError, NotImplementedError)


class MinerUParser:
    """Backend whose results come back as a zip of markdown plus image files.

    *client* talks to the MinerU API (base URL and bearer token preset).
    *transfer_client* carries no credentials and is used for the
    pre-signed upload and the result download.
    """

    name = "mineru"

    def __init__(
        self,
        config: MinerUParserConfig,
        client: httpx.AsyncClient,
        transfer_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._client = client
        self._transfer = transfer_client or client

    async def submit(self, source: bytes, file_name: str) -> str:
        payload = {
            "files": [{"name": file_name, "is_ocr": self.config.is_ocr}],
            "model_version": self.config.model_version,
            "enable_formula": self.config.enable_formula,
            "enable_table": self.config.enable_table,
            "language": self.config.language,
        }
        resp = await send(
            self._client, "POST", "/file-urls/batch",
            error_cls=SubmissionError, backend=self.name,
            json=payload,
        )
        data = self._unwrap(json_body(resp, error_cls=SubmissionError, backend=self.name), SubmissionError)

        batch_id = data.get("batch_id")
        file_urls = data.get("file_urls") or []
        if not batch_id or not file_urls:
            raise SubmissionError("upload slot response lacks batch_id or file_urls", backend=self.name)
        logger.debug("got upload slot for batch %s", batch_id)

        # Pre-signed URL: no auth header, no content type
        await send(
            self._transfer, "PUT", file_urls[0],
            error_cls=SubmissionError, backend=self.name, job_id=batch_id,
            content=source,
        )
        logger.debug("uploaded %d bytes for batch %s", len(source), batch_id)
        return str(batch_id)

    async def poll(self, job_id: str) -> PollResult:
        resp = await send(
            self._client, "GET", f"/extract-results/batch/{job_id}",
            error_cls=PollError, backend=self.name, job_id=job_id,
        )
        data = self._unwrap(
            json_body(resp, error_cls=PollError, backend=self.name, job_id=job_id),
            PollError,
            job_id,
        )
        results = data.get("extract_result") or []
        if not results:
            # The batch has not registered the uploaded file yet
            return PollResult(status=PollStatus.running)

        result = results[0]
        state = result.get("state")
        if state == "done":
            return PollResult(status=PollStatus.success, result_url=result.get("full_zip_url"))
        if state == "failed":
            return PollResult(status=PollStatus.failed, message=result.get("err_msg") or "unknown error")

        progress = result.get("extract_progress") or {}
        return PollResult(
            status=PollStatus.running,
            extracted_pages=progress.get("extracted_pages"),
            total_pages=progress.get("total_pages"),
        )

    async def fetch(self, job: ConversionJob, workdir: Path) -> ParseOutput:
        """Download the result zip, extract it, and read the first markdown file."""
        zip_url = job.last_poll.result_url if job.last_poll else None
        if not zip_url:
            raise FetchError("success status carried no result archive URL", backend=self.name, job_id=job.job_id)

        safe_id = _SAFE_ID_RE.sub("_", job.job_id)
        archive = workdir / f"{safe_id}.zip"
        extract_dir = workdir / f"extract_{safe_id}"

        await self._download(zip_url, archive, job.job_id)
        try:
            root = await asyncio.to_thread(extract_archive, archive, extract_dir)
        except _ARCHIVE_ERRORS as e:
            raise FetchError(f"malformed result archive: {e}", backend=self.name, job_id=job.job_id) from e
        finally:
            archive.unlink(missing_ok=True)

        md_file = await asyncio.to_thread(find_markdown, root)
        if md_file is None:
            raise MissingOutputError("no markdown file in result archive", backend=self.name, job_id=job.job_id)

        try:
            markdown = await asyncio.to_thread(md_file.read_text, encoding="utf-8")
        except UnicodeDecodeError as e:
            raise FetchError(
                f"{md_file.name} is not valid UTF-8: {e.reason} at byte {e.start}",
                backend=self.name, job_id=job.job_id,
            ) from e

        logger.info("job %s: read markdown from %s", job.job_id, md_file.relative_to(root))
        return ParseOutput(markdown=markdown, media_root=md_file.parent)

    async def _download(self, url: str, dest: Path, job_id: str) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with self._transfer.stream("GET", url) as resp:
                resp.raise_for_status()
                with dest.open("wb") as fh:
                    async for chunk in resp.aiter_bytes():
                        await asyncio.to_thread(fh.write, chunk)
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"archive download returned HTTP {e.response.status_code}",
                backend=self.name, job_id=job_id,
            ) from e
        except httpx.TransportError as e:
            raise FetchError(
                f"archive download failed: {e.__class__.__name__}",
                backend=self.name, job_id=job_id, retryable=True,
            ) from e
        logger.debug("downloaded result archive to %s", dest)

    async def aclose(self) -> None:
        await self._client.aclose()
        if self._transfer is not self._client:
            await self._transfer.aclose()

    def _unwrap(self, body: dict, error_cls: type, job_id: str | None = None) -> dict:
        """Check MinerU's ``{code, msg, data}`` envelope and return ``data``."""
        if body.get("code") != 0:
            raise error_cls(
                f"MinerU error: {body.get('msg') or body.get('code')}",
                backend=self.name,
                job_id=job_id,
            )
        data = body.get("data")
        if not isinstance(data, dict):
            raise error_cls("response has no data object", backend=self.name, job_id=job_id)
        return data
