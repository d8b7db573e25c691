"""Relocate images referenced from markdown into a MediaStore."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote

import httpx
from pydantic import BaseModel, Field

from docrelay.errors import ImageResolutionError, StorageError
from docrelay.storage.base import MediaStore
from docrelay.storage.naming import resolve_extension

logger = logging.getLogger(__name__)

IMAGE_PATTERN = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")

_REMOTE_RE = re.compile(r"^https?://", re.IGNORECASE)

# a single failed upload is an image failure, not evidence the store is down
_MIN_UPLOADS_FOR_OUTAGE = 2


class ResolvedImage(BaseModel):
    """A relocated image: its position in the document and its new home."""

    index: int = Field(ge=1)
    target: str
    url: str


class RewriteResult(BaseModel):
    content: str
    images: list[ResolvedImage] = Field(default_factory=list)

    @property
    def urls(self) -> list[str]:
        return [img.url for img in self.images]


@dataclass
class _Outcome:
    target: str
    index: int
    url: str | None = None
    attempted_upload: bool = False
    storage_error: StorageError | None = None


def find_image_targets(markdown: str) -> list[str]:
    """Distinct image targets in first-occurrence order."""
    seen: dict[str, None] = {}
    for match in IMAGE_PATTERN.finditer(markdown):
        seen.setdefault(match.group(2), None)
    return list(seen)


class MarkdownMediaRewriter:
    """Uploads every relocatable image once and rewrites its references.

    A target is relocatable when it is an absolute http(s) URL, or a
    path relative to the output's media root. When a remote URL pattern
    is given, only URLs matching it are relocated and everything else
    passes through. ``data:`` URIs and URLs the store already owns are
    always left alone.

    Per-image failures are logged and leave that image's references
    untouched. StorageError is raised only if at least two uploads were
    attempted and every one of them failed with it.
    """

    def __init__(
        self,
        store: MediaStore,
        http_client: httpx.AsyncClient,
        max_concurrency: int = 4,
    ) -> None:
        self.store = store
        self._http = http_client
        self._max_concurrency = max_concurrency

    async def rewrite(
        self,
        markdown: str,
        *,
        namespace: str,
        scope: str,
        media_root: Path | None = None,
        remote_url_pattern: str | None = None,
    ) -> RewriteResult:
        pattern = re.compile(remote_url_pattern) if remote_url_pattern else None
        candidates = [t for t in find_image_targets(markdown) if self._is_candidate(t, pattern)]
        if not candidates:
            logger.debug("no images to relocate")
            return RewriteResult(content=markdown)

        local = [t for t in candidates if not _REMOTE_RE.match(t)]
        if local and media_root is None:
            raise ValueError(f"local image target {local[0]!r} found but no media root was provided")

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def bounded(index: int, target: str) -> _Outcome:
            async with semaphore:
                return await self._relocate(index, target, namespace, scope, media_root)

        # Substitution waits for every resolution to finish
        outcomes = await asyncio.gather(
            *(bounded(i, t) for i, t in enumerate(candidates, start=1))
        )

        attempted = [o for o in outcomes if o.attempted_upload]
        storage_failures = [o.storage_error for o in attempted if o.storage_error is not None]
        if len(attempted) >= _MIN_UPLOADS_FOR_OUTAGE and len(storage_failures) == len(attempted):
            raise StorageError(
                self.store.name,
                f"all {len(attempted)} image upload(s) failed",
                retryable=any(e.retryable for e in storage_failures),
            ) from storage_failures[-1]

        mapping = {o.target: o.url for o in outcomes if o.url}
        images = [ResolvedImage(index=o.index, target=o.target, url=o.url) for o in outcomes if o.url]
        logger.info("relocated %d of %d image(s)", len(images), len(candidates))
        return RewriteResult(content=substitute(markdown, mapping), images=images)

    def _is_candidate(self, target: str, pattern: re.Pattern | None) -> bool:
        if target.startswith("data:"):
            return False
        if _REMOTE_RE.match(target):
            if self.store.owns(target):
                return False
            return pattern is None or pattern.match(target) is not None
        if pattern is not None:
            return False
        # other schemes (ftp://, mailto:) are not ours to touch
        return "://" not in target and not target.startswith("mailto:")

    async def _relocate(
        self,
        index: int,
        target: str,
        namespace: str,
        scope: str,
        media_root: Path | None,
    ) -> _Outcome:
        outcome = _Outcome(target=target, index=index)
        try:
            if _REMOTE_RE.match(target):
                data = await self._download(target)
            else:
                data = await self._read_local(target, media_root)
        except ImageResolutionError as e:
            logger.warning("%s", e)
            return outcome

        hint = f"image_{index}{resolve_extension(target)}"
        outcome.attempted_upload = True
        try:
            outcome.url = await self.store.put(data, namespace, scope, hint)
        except StorageError as e:
            logger.warning("%s", ImageResolutionError(target, str(e)))
            outcome.storage_error = e
            return outcome

        logger.debug("image %d %s -> %s", index, target, outcome.url)
        return outcome

    async def _download(self, url: str) -> bytes:
        try:
            resp = await self._http.get(url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ImageResolutionError(url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ImageResolutionError(url, f"download failed: {e.__class__.__name__}") from e
        return resp.content

    async def _read_local(self, target: str, media_root: Path) -> bytes:
        root = media_root.resolve()
        path = (root / unquote(target.strip())).resolve()
        if not path.is_relative_to(root):
            raise ImageResolutionError(target, "path escapes the media root")
        if not path.is_file():
            raise ImageResolutionError(target, "file not found")
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise ImageResolutionError(target, str(e)) from e


def substitute(markdown: str, mapping: dict[str, str]) -> str:
    """Replace the target of every image whose target is in *mapping*.

    Works per match rather than by chained string replacement, so a
    target that is a substring of another is never rewritten twice, and
    text outside image syntax is never touched.
    """
    if not mapping:
        return markdown

    def _swap(match: re.Match) -> str:
        url = mapping.get(match.group(2))
        if url is None:
            return match.group(0)
        return f"![{match.group(1)}]({url})"

    return IMAGE_PATTERN.sub(_swap, markdown)
