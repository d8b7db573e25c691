"""Aliyun DocMind parser: job status polling plus layout-paginated results."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import httpx

from docrelay.config.models import AliyunParserConfig
from docrelay.errors import FetchError, PollError, SubmissionError
from docrelay.parsers.models import ConversionJob, ParseOutput, PollResult, PollStatus
from docrelay.transport import json_body, send

logger = logging.getLogger(__name__)

_FAILED_STATES = {"fail", "failed"}


class AliyunParser:
    """Backend whose results come back as pages of layout blocks.

    Every image in the assembled markdown is a temporary URL on the
    vendor's object storage domain; nothing is written to the workdir.
    The *client* is expected to carry the endpoint base URL and auth.
    """

    name = "aliyun"

    def __init__(self, config: AliyunParserConfig, client: httpx.AsyncClient) -> None:
        self.config = config
        self._client = client

    async def submit(self, source: bytes, file_name: str) -> str:
        form = {
            "FileName": file_name,
            "LlmEnhancement": str(self.config.llm_enhancement).lower(),
        }
        if self.config.llm_enhancement and self.config.enhancement_mode and self.config.enhancement_mode.strip():
            form["EnhancementMode"] = self.config.enhancement_mode
        if self.config.output_html_table:
            form["OutputHtmlTable"] = "true"

        resp = await send(
            self._client, "POST", "/SubmitDocParserJob",
            error_cls=SubmissionError, backend=self.name,
            data=form,
            files={"file": (file_name, source)},
        )
        body = json_body(resp, error_cls=SubmissionError, backend=self.name)
        data = body.get("Data") or {}
        job_id = data.get("Id") if isinstance(data, dict) else None
        if not job_id:
            raise SubmissionError(
                f"no job id in response [Code: {body.get('Code')}, Message: {body.get('Message')}]",
                backend=self.name,
            )
        return str(job_id)

    async def poll(self, job_id: str) -> PollResult:
        resp = await send(
            self._client, "GET", "/QueryDocParserStatus",
            error_cls=PollError, backend=self.name, job_id=job_id,
            params={"Id": job_id},
        )
        body = json_body(resp, error_cls=PollError, backend=self.name, job_id=job_id)
        data = body.get("Data")
        if not isinstance(data, dict) or "Status" not in data:
            raise PollError("status response has no Data.Status", backend=self.name, job_id=job_id)

        state = str(data["Status"]).lower()
        if state == "success":
            return PollResult(status=PollStatus.success)
        if state in _FAILED_STATES:
            return PollResult(
                status=PollStatus.failed,
                message=body.get("Message") or data.get("Message") or "document parsing failed",
            )
        return PollResult(
            status=PollStatus.running,
            extracted_pages=data.get("NumberOfSuccessfulParsing"),
            total_pages=data.get("PageCountEstimate"),
        )

    async def fetch(self, job: ConversionJob, workdir: Path) -> ParseOutput:
        """Page through layout blocks and join their markdown with blank lines.

        Stops on an empty page or one shorter than ``layout_step_size``.
        """
        step = self.config.layout_step_size
        cursor = 0
        fragments: list[str] = []
        pages = 0

        while True:
            layouts = await self._fetch_page(job.job_id, cursor, step)
            pages += 1
            if not layouts:
                break
            for layout in layouts:
                text = layout.get("markdownContent") if isinstance(layout, dict) else None
                if text:
                    fragments.append(text)
            cursor += len(layouts)
            if len(layouts) < step:
                break

        if cursor == 0:
            raise FetchError("result contained no layout blocks", backend=self.name, job_id=job.job_id)

        logger.info("job %s: %d layout block(s) over %d page(s)", job.job_id, cursor, pages)
        return ParseOutput(
            markdown="\n\n".join(fragments).strip(),
            remote_url_pattern=self.config.image_url_pattern,
        )

    async def _fetch_page(self, job_id: str, cursor: int, step: int) -> list:
        resp = await send(
            self._client, "GET", "/GetDocParserResult",
            error_cls=FetchError, backend=self.name, job_id=job_id,
            params={"Id": job_id, "LayoutNum": cursor, "LayoutStepSize": step},
        )
        body = json_body(resp, error_cls=FetchError, backend=self.name, job_id=job_id)
        data = body.get("Data")
        if data is None:
            return []
        # Data is sometimes a JSON-encoded string rather than an object
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise FetchError("result page is not valid JSON", backend=self.name, job_id=job_id) from e
        layouts = data.get("layouts") if isinstance(data, dict) else None
        return layouts if isinstance(layouts, list) else []

    async def aclose(self) -> None:
        await self._client.aclose()
