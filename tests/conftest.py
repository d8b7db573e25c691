"""Shared test fixtures for docrelay."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from docrelay.config.models import DocRelayConfig
from docrelay.errors import StorageError
from docrelay.parsers.models import ConversionJob, ParseOutput, PollResult, PollStatus
from docrelay.storage.naming import object_name, scope_path


class FakeStore:
    """In-memory MediaStore that records every put."""

    name = "fake"
    base = "https://cdn.test/media"

    def __init__(self, fail_hints: set[str] | None = None, fail_all: bool = False):
        self.puts: list[tuple[bytes, str, str, str]] = []
        self.objects: dict[str, bytes] = {}
        self.fail_hints = fail_hints or set()
        self.fail_all = fail_all

    async def put(self, data: bytes, namespace: str, scope: str, filename_hint: str) -> str:
        self.puts.append((data, namespace, scope, filename_hint))
        if self.fail_all or filename_hint in self.fail_hints:
            raise StorageError(self.name, f"refused {filename_hint}")
        key = f"{scope_path(namespace, scope)}/{object_name(data, filename_hint)}"
        self.objects[key] = data
        return f"{self.base}/{key}"

    async def delete_scope(self, namespace: str, scope: str) -> int:
        prefix = scope_path(namespace, scope) + "/"
        doomed = [k for k in self.objects if k.startswith(prefix)]
        for k in doomed:
            del self.objects[k]
        return len(doomed)

    def owns(self, url: str) -> bool:
        return url.startswith(self.base + "/")


class FakeParser:
    """Scripted DocumentParser: returns *statuses* in order, then *output*."""

    name = "fake-parser"

    def __init__(
        self,
        statuses: list[PollResult] | None = None,
        output: ParseOutput | None = None,
        job_id: str = "job-1",
    ):
        self.statuses = list(statuses or [PollResult(status=PollStatus.success)])
        self.output = output or ParseOutput(markdown="# Title\n")
        self.job_id = job_id
        self.submitted: list[tuple[bytes, str]] = []
        self.poll_calls = 0
        self.fetch_workdirs: list[Path] = []
        self.closed = False

    async def submit(self, source: bytes, file_name: str) -> str:
        self.submitted.append((source, file_name))
        return self.job_id

    async def poll(self, job_id: str) -> PollResult:
        self.poll_calls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def fetch(self, job: ConversionJob, workdir: Path) -> ParseOutput:
        self.fetch_workdirs.append(workdir)
        return self.output

    async def aclose(self) -> None:
        self.closed = True


def make_zip(files: dict[str, bytes | str]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buf.getvalue()


@pytest.fixture
def default_config():
    return DocRelayConfig()


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def no_sleep():
    return AsyncMock()


@pytest.fixture
def media_root(tmp_path):
    root = tmp_path / "extract"
    (root / "images").mkdir(parents=True)
    (root / "img1.png").write_bytes(b"\x89PNG first")
    (root / "images" / "fig2.jpg").write_bytes(b"\xff\xd8 second")
    (root / "images" / "fig3.gif").write_bytes(b"GIF89a third")
    return root
