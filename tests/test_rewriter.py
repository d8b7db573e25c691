"""Tests for MarkdownMediaRewriter: classification, dedup, partial failure, substitution."""

import asyncio
import logging
from unittest.mock import MagicMock

import httpx
import pytest
import requests

from docrelay.config.models import GitHubStoreConfig
from docrelay.errors import StorageError
from docrelay.markdown.rewriter import MarkdownMediaRewriter, find_image_targets, substitute
from docrelay.storage.github import GitHubStore
from docrelay.storage.naming import content_hash

from conftest import FakeStore

OSS_PATTERN = r"https?://[^/]*\.aliyuncs\.com/.*"


def _http(routes: dict[str, httpx.Response] | None = None, calls: list | None = None) -> httpx.AsyncClient:
    routes = routes or {}

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        return routes.get(str(request.url), httpx.Response(404))

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _rewriter(store, http=None, max_concurrency=4):
    return MarkdownMediaRewriter(store, http or _http(), max_concurrency=max_concurrency)


# ── scanning & substitution ─────────────────────────────────────────


class TestScanning:
    def test_distinct_targets_in_first_occurrence_order(self):
        md = "![a](x.png) text ![b](y.png) ![c](x.png)"
        assert find_image_targets(md) == ["x.png", "y.png"]

    def test_plain_links_are_not_images(self):
        assert find_image_targets("[link](x.png) and ![img](y.png)") == ["y.png"]

    def test_substitute_preserves_alt_and_surrounding_text(self):
        md = "Intro ![Fig 1](a.png), then [a.png](a.png)."
        out = substitute(md, {"a.png": "https://cdn/a"})
        assert out == "Intro ![Fig 1](https://cdn/a), then [a.png](a.png)."

    def test_substring_targets_not_double_replaced(self):
        md = "![](img.png) ![](img.png.bak.png)"
        out = substitute(md, {"img.png": "U1", "img.png.bak.png": "U2"})
        assert out == "![](U1) ![](U2)"

    def test_empty_mapping_returns_input(self):
        md = "![a](b.png)"
        assert substitute(md, {}) is md


# ── local (archive) images ──────────────────────────────────────────


class TestLocalImages:
    async def test_repeated_target_uploaded_once(self, media_root):
        store = FakeStore()
        md = "See ![a](img1.png) and again ![a](img1.png)."

        result = await _rewriter(store).rewrite(md, namespace="kb", scope="doc", media_root=media_root)

        assert len(store.puts) == 1
        digest = content_hash(b"\x89PNG first")
        url = f"{FakeStore.base}/kb/doc/{digest}.png"
        assert result.content == f"See ![a]({url}) and again ![a]({url})."
        assert result.urls == [url]

    async def test_n_distinct_targets_give_n_urls(self, media_root):
        store = FakeStore()
        md = "![1](img1.png)\n![2](images/fig2.jpg)\n![3](images/fig3.gif)"

        result = await _rewriter(store).rewrite(md, namespace="kb", scope="doc", media_root=media_root)

        assert len(result.urls) == 3
        for target in ("img1.png", "images/fig2.jpg", "images/fig3.gif"):
            assert f"({target})" not in result.content
        assert [i.index for i in result.images] == [1, 2, 3]
        assert sorted(h for *_, h in store.puts) == ["image_1.png", "image_2.jpg", "image_3.gif"]

    async def test_missing_file_is_skipped(self, media_root, caplog):
        store = FakeStore()
        md = "![1](img1.png) ![2](images/missing.png) ![3](images/fig3.gif)"

        with caplog.at_level(logging.WARNING):
            result = await _rewriter(store).rewrite(md, namespace="kb", scope="doc", media_root=media_root)

        assert len(result.urls) == 2
        assert "![2](images/missing.png)" in result.content
        assert "file not found" in caplog.text

    async def test_sequence_metadata_keeps_document_order(self, media_root):
        store = FakeStore()
        md = "![x](images/fig3.gif) ![y](img1.png)"
        result = await _rewriter(store).rewrite(md, namespace="kb", scope="doc", media_root=media_root)
        assert [(i.index, i.target) for i in result.images] == [(1, "images/fig3.gif"), (2, "img1.png")]

    async def test_path_escaping_media_root_is_skipped(self, media_root, tmp_path):
        (tmp_path / "secret.png").write_bytes(b"secret")
        store = FakeStore()
        result = await _rewriter(store).rewrite(
            "![s](../secret.png)", namespace="kb", scope="doc", media_root=media_root
        )
        assert result.urls == []
        assert store.puts == []

    async def test_url_encoded_path(self, media_root):
        (media_root / "my fig.png").write_bytes(b"spaced")
        store = FakeStore()
        result = await _rewriter(store).rewrite(
            "![s](my%20fig.png)", namespace="kb", scope="doc", media_root=media_root
        )
        assert len(result.urls) == 1

    async def test_local_target_without_media_root_is_an_error(self):
        with pytest.raises(ValueError, match="media root"):
            await _rewriter(FakeStore()).rewrite("![a](img1.png)", namespace="kb", scope="doc")


# ── remote images ───────────────────────────────────────────────────


class TestRemoteImages:
    async def test_downloads_and_uploads_matching_urls(self):
        oss = "https://bucket.oss-cn-hangzhou.aliyuncs.com/tmp/pic.JPEG?Expires=1&Signature=abc"
        calls = []
        http = _http({oss: httpx.Response(200, content=b"jpeg-bytes")}, calls)
        store = FakeStore()

        result = await _rewriter(store, http).rewrite(
            f"![p]({oss})", namespace="kb", scope="doc", remote_url_pattern=OSS_PATTERN
        )

        assert calls == [oss]
        assert store.puts[0][3] == "image_1.JPEG"
        assert result.urls[0].endswith(".JPEG")
        assert oss not in result.content

    async def test_non_matching_urls_pass_through(self):
        calls = []
        store = FakeStore()
        md = "![logo](https://example.com/logo.png) ![rel](images/a.png)"

        result = await _rewriter(store, _http(calls=calls)).rewrite(
            md, namespace="kb", scope="doc", remote_url_pattern=OSS_PATTERN
        )

        assert result.content == md
        assert result.urls == []
        assert calls == []

    async def test_without_pattern_every_http_url_is_relocated(self):
        url = "https://example.com/logo.png"
        store = FakeStore()
        result = await _rewriter(store, _http({url: httpx.Response(200, content=b"logo")})).rewrite(
            f"![logo]({url})", namespace="kb", scope="doc"
        )
        assert len(result.urls) == 1

    async def test_already_permanent_urls_untouched(self):
        permanent = f"{FakeStore.base}/kb/doc/abc.png"
        md = f"![done]({permanent}) ![inline](data:image/png;base64,AAAA)"
        calls = []
        store = FakeStore()

        result = await _rewriter(store, _http(calls=calls)).rewrite(md, namespace="kb", scope="doc")

        assert result.content == md
        assert calls == []
        assert store.puts == []

    async def test_download_failure_keeps_original(self, caplog):
        url = "https://x.aliyuncs.com/gone.png"
        store = FakeStore()
        with caplog.at_level(logging.WARNING):
            result = await _rewriter(store).rewrite(
                f"![g]({url})", namespace="kb", scope="doc", remote_url_pattern=OSS_PATTERN
            )
        assert result.content == f"![g]({url})"
        assert result.urls == []
        assert "HTTP 404" in caplog.text

    async def test_identical_bytes_under_two_targets_share_url(self):
        a = "https://a.aliyuncs.com/1.png"
        b = "https://b.aliyuncs.com/2.png"
        http = _http({a: httpx.Response(200, content=b"same"), b: httpx.Response(200, content=b"same")})
        store = FakeStore()
        result = await _rewriter(store, http).rewrite(
            f"![]({a}) ![]({b})", namespace="kb", scope="doc", remote_url_pattern=OSS_PATTERN
        )
        assert len(store.puts) == 2
        assert result.urls[0] == result.urls[1]


# ── documents without images / failure policy ───────────────────────


class TestFailurePolicy:
    async def test_zero_images_unchanged(self):
        md = "# Title\n\nJust text, and a [link](https://example.com)."
        result = await _rewriter(FakeStore()).rewrite(md, namespace="kb", scope="doc")
        assert result.content == md
        assert result.urls == []

    async def test_partial_upload_failure_is_success(self, media_root):
        store = FakeStore(fail_hints={"image_2.jpg"})
        md = "![1](img1.png) ![2](images/fig2.jpg)"
        result = await _rewriter(store).rewrite(md, namespace="kb", scope="doc", media_root=media_root)
        assert len(result.urls) == 1
        assert "![2](images/fig2.jpg)" in result.content

    async def test_store_down_for_every_image_raises(self, media_root):
        store = FakeStore(fail_all=True)
        md = "![1](img1.png) ![2](images/fig2.jpg)"
        with pytest.raises(StorageError, match="all 2 image upload"):
            await _rewriter(store).rewrite(md, namespace="kb", scope="doc", media_root=media_root)

    async def test_only_missing_files_is_not_a_storage_failure(self, media_root):
        store = FakeStore(fail_all=True)
        result = await _rewriter(store).rewrite(
            "![x](nope.png)", namespace="kb", scope="doc", media_root=media_root
        )
        assert result.urls == []
        assert store.puts == []

    async def test_concurrency_limit_respected(self, media_root):
        in_flight = 0
        peak = 0

        class SlowStore(FakeStore):
            async def put(self, data, namespace, scope, filename_hint):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return await super().put(data, namespace, scope, filename_hint)

        for i in range(6):
            (media_root / f"p{i}.png").write_bytes(f"img{i}".encode())
        md = " ".join(f"![](p{i}.png)" for i in range(6))

        result = await _rewriter(SlowStore(), max_concurrency=2).rewrite(
            md, namespace="kb", scope="doc", media_root=media_root
        )
        assert len(result.urls) == 6
        assert peak <= 2

    async def test_single_failed_upload_keeps_document(self, media_root, caplog):
        store = FakeStore(fail_all=True)
        with caplog.at_level(logging.WARNING):
            result = await _rewriter(store).rewrite(
                "![1](img1.png)", namespace="kb", scope="doc", media_root=media_root
            )
        assert result.content == "![1](img1.png)"
        assert result.urls == []
        assert "refused image_1.png" in caplog.text


class TestGitHubStoreFailures:
    async def test_network_error_on_one_upload_is_tolerated(self, media_root):
        repo = MagicMock()
        repo.create_file.side_effect = [None, requests.exceptions.ConnectionError("reset by peer"), None]
        client = MagicMock()
        client.get_repo.return_value = repo
        store = GitHubStore(GitHubStoreConfig(repo="acme/assets"), client=client)
        md = "![1](img1.png) ![2](images/fig2.jpg) ![3](images/fig3.gif)"

        result = await _rewriter(store).rewrite(md, namespace="kb", scope="doc", media_root=media_root)

        assert len(result.urls) == 2
        assert repo.create_file.call_count == 3
        remaining = [t for t in ("img1.png", "images/fig2.jpg", "images/fig3.gif") if f"({t})" in result.content]
        assert len(remaining) == 1
