"""Per-document orchestration: validate, parse, relocate images, clean up."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import tempfile
import time
from pathlib import Path, PurePath

import httpx
from pydantic import BaseModel, Field

from docrelay.config.models import DocRelayConfig, FileConfig
from docrelay.errors import InvalidDocumentError
from docrelay.markdown.rewriter import MarkdownMediaRewriter, ResolvedImage
from docrelay.parsers import create_parser
from docrelay.parsers.base import DocumentParser
from docrelay.parsers.job import JobRunner, Sleep
from docrelay.storage import create_media_store
from docrelay.storage.base import MediaStore
from docrelay.transport import create_http_client

logger = logging.getLogger(__name__)

SCOPE_MAX_LENGTH = 50

_UNSAFE_RE = re.compile(r"[^\w\-]")
_UNDERSCORES_RE = re.compile(r"_+")


class ConversionOutcome(BaseModel):
    """Final artifact handed back to the caller."""

    file_name: str
    markdown: str
    image_count: int = Field(ge=0)
    image_urls: list[str] = Field(default_factory=list)
    images: list[ResolvedImage] = Field(default_factory=list)
    processing_time_ms: int = Field(ge=0)
    job_id: str
    parser: str
    storage: str
    namespace: str
    scope: str


def validate_document(source: bytes, file_name: str, files: FileConfig) -> None:
    """Reject a document before any backend call is made."""
    if not file_name or not file_name.strip():
        raise InvalidDocumentError("file name is empty")
    suffix = PurePath(file_name).suffix
    if not suffix or not files.is_allowed_type(suffix):
        raise InvalidDocumentError(
            f"unsupported file type {suffix or '(none)'!r}; allowed: {', '.join(files.allowed_types)}"
        )
    limit = files.max_size_mb * 1024 * 1024
    if len(source) > limit:
        raise InvalidDocumentError(
            f"{file_name} is {len(source)} bytes, larger than the {files.max_size_mb} MB limit"
        )


def derive_scope(file_name: str, now_ms: int | None = None) -> str:
    """Turn a file name into a storage scope segment.

    ``Annual Report (2024).pdf`` becomes ``Annual_Report_2024``. Names with
    nothing usable left fall back to ``doc-{epoch_ms}``.
    """
    stem = PurePath(file_name).stem if file_name else ""
    scope = _UNDERSCORES_RE.sub("_", _UNSAFE_RE.sub("_", stem)).strip("_")
    scope = scope[:SCOPE_MAX_LENGTH].rstrip("_")
    if scope:
        return scope
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"doc-{now_ms}"


class DocumentPipeline:
    """Runs one document at a time through a parser and a media store.

    Parsers and stores are built on first use from config and cached;
    pass *parsers*/*stores* to supply pre-built ones (keyed by tag).
    Use as an async context manager, or call ``aclose`` when done, to
    release the HTTP clients the pipeline created.
    """

    def __init__(
        self,
        config: DocRelayConfig,
        *,
        parsers: dict[str, DocumentParser] | None = None,
        stores: dict[str, MediaStore] | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self._parsers: dict[str, DocumentParser] = dict(parsers or {})
        self._stores: dict[str, MediaStore] = dict(stores or {})
        self._owned_parsers: list[DocumentParser] = []
        self._owns_http = http_client is None
        self._http = http_client or create_http_client(config.http)
        self._sleep = sleep

    async def __aenter__(self) -> DocumentPipeline:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        for parser in self._owned_parsers:
            await parser.aclose()
        self._owned_parsers.clear()
        if self._owns_http:
            await self._http.aclose()

    def parser(self, tag: str | None = None) -> DocumentParser:
        tag = tag or self.config.parser.provider
        if tag not in self._parsers:
            parser = create_parser(self.config.parser, self.config.http, provider=tag)
            self._parsers[tag] = parser
            self._owned_parsers.append(parser)
        return self._parsers[tag]

    def store(self, tag: str | None = None) -> MediaStore:
        tag = tag or self.config.storage.provider
        if tag not in self._stores:
            self._stores[tag] = create_media_store(self.config.storage, provider=tag)
        return self._stores[tag]

    async def convert(
        self,
        source: bytes,
        file_name: str,
        *,
        parser: str | None = None,
        storage: str | None = None,
        namespace: str | None = None,
        scope: str | None = None,
    ) -> ConversionOutcome:
        """Convert *source* to markdown with every image relocated.

        Raises InvalidDocumentError before touching any backend, ParserError
        subclasses from the job lifecycle, and StorageError when no image
        could be stored at all. The scratch directory is removed on every
        path.
        """
        started = time.perf_counter()
        validate_document(source, file_name, self.config.files)

        doc_parser = self.parser(parser)
        store = self.store(storage)
        namespace = namespace or self.config.storage.namespace
        scope = scope or derive_scope(file_name)

        workdir = self._make_workdir()
        try:
            runner = JobRunner(doc_parser, self.config.parser.polling, sleep=self._sleep)
            job, output = await runner.run(source, file_name, workdir)

            rewriter = MarkdownMediaRewriter(store, self._http, self.config.images.max_concurrency)
            result = await rewriter.rewrite(
                output.markdown,
                namespace=namespace,
                scope=scope,
                media_root=output.media_root,
                remote_url_pattern=output.remote_url_pattern,
            )
        finally:
            self._cleanup(workdir)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "converted %s via %s in %d ms (%d image(s) -> %s)",
            file_name, doc_parser.name, elapsed_ms, len(result.images), store.name,
        )
        return ConversionOutcome(
            file_name=file_name,
            markdown=result.content,
            image_count=len(result.images),
            image_urls=result.urls,
            images=result.images,
            processing_time_ms=elapsed_ms,
            job_id=job.job_id,
            parser=doc_parser.name,
            storage=store.name,
            namespace=namespace,
            scope=scope,
        )

    async def purge(self, namespace: str, scope: str, storage: str | None = None) -> int:
        """Best-effort removal of every image stored under namespace/scope."""
        return await self.store(storage).delete_scope(namespace, scope)

    def _make_workdir(self) -> Path:
        tmp_root = Path(self.config.files.tmp_dir)
        tmp_root.mkdir(parents=True, exist_ok=True)
        # one private directory per run
        return Path(tempfile.mkdtemp(prefix="run_", dir=tmp_root))

    def _cleanup(self, workdir: Path) -> None:
        try:
            shutil.rmtree(workdir)
        except OSError:
            logger.warning("could not remove scratch directory %s", workdir, exc_info=True)
        else:
            logger.debug("removed scratch directory %s", workdir)
