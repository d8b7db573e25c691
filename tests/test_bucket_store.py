"""Tests for the S3-compatible bucket store (boto3 client mocked)."""

import logging
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from docrelay.config.models import BucketStoreConfig
from docrelay.errors import StorageError
from docrelay.storage.bucket import BucketStore
from docrelay.storage.naming import content_hash


def _client_error(code: str = "AccessDenied") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "nope"}}, "PutObject")


@pytest.fixture
def s3():
    return MagicMock()


@pytest.fixture
def store(s3):
    return BucketStore(BucketStoreConfig(bucket="media", region="eu-west-1"), client=s3)


# ── construction & naming ───────────────────────────────────────────


class TestBucketStoreNaming:
    def test_requires_bucket(self):
        with pytest.raises(ValueError, match="bucket"):
            BucketStore(BucketStoreConfig(), client=MagicMock())

    def test_creates_boto3_client_when_not_injected(self):
        with patch("docrelay.storage.bucket.boto3.client") as mock_client:
            BucketStore(
                BucketStoreConfig(bucket="media", endpoint_url="https://oss.example.com"),
                aws_access_key_id="id",
                aws_secret_access_key="secret",
            )
        mock_client.assert_called_once_with(
            "s3",
            endpoint_url="https://oss.example.com",
            region_name="us-east-1",
            aws_access_key_id="id",
            aws_secret_access_key="secret",
        )

    def test_default_public_base_is_aws(self, store):
        assert store.public_base == "https://media.s3.eu-west-1.amazonaws.com"

    def test_public_base_from_endpoint(self, s3):
        cfg = BucketStoreConfig(bucket="media", endpoint_url="https://oss-cn-hangzhou.aliyuncs.com")
        assert BucketStore(cfg, client=s3).public_base == "https://media.oss-cn-hangzhou.aliyuncs.com"

    def test_custom_public_url_wins(self, s3):
        cfg = BucketStoreConfig(bucket="media", public_url="https://img.example.com/")
        assert BucketStore(cfg, client=s3).public_base == "https://img.example.com"

    def test_object_key_layout(self, s3):
        cfg = BucketStoreConfig(bucket="media", key_prefix="docs/")
        key = BucketStore(cfg, client=s3).object_key(b"bytes", "kb1", "report", "image_1.jpg")
        assert key == f"docs/kb1/report/{content_hash(b'bytes')}.jpg"

    def test_owns_its_own_urls_only(self, store):
        assert store.owns("https://media.s3.eu-west-1.amazonaws.com/kb/doc/x.png")
        assert not store.owns("https://other.example.com/x.png")


# ── put ─────────────────────────────────────────────────────────────


class TestBucketStorePut:
    async def test_put_returns_public_url(self, store, s3):
        url = await store.put(b"png-bytes", "kb1", "report", "image_1.png")
        assert url == (
            f"https://media.s3.eu-west-1.amazonaws.com/kb1/report/{content_hash(b'png-bytes')}.png"
        )
        s3.put_object.assert_called_once()
        kwargs = s3.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "media"
        assert kwargs["Body"] == b"png-bytes"
        assert kwargs["ContentType"] == "image/png"

    async def test_put_is_idempotent(self, store, s3):
        first = await store.put(b"same", "kb1", "report", "image_1.png")
        second = await store.put(b"same", "kb1", "report", "image_2.png")
        assert first == second
        assert s3.put_object.call_count == 1

    async def test_uppercase_extension_kept_with_jpeg_content_type(self, store, s3):
        url = await store.put(b"jpg", "kb", "doc", "image_1.JPEG")
        assert url.endswith(".JPEG")
        assert s3.put_object.call_args.kwargs["ContentType"] == "image/jpeg"

    async def test_unknown_extension_uploads_as_octet_stream(self, store, s3):
        await store.put(b"raw", "kb", "doc", "image_1.tiff")
        assert s3.put_object.call_args.kwargs["ContentType"] == "application/octet-stream"

    async def test_client_error_wrapped(self, store, s3):
        s3.put_object.side_effect = _client_error()
        with pytest.raises(StorageError) as exc_info:
            await store.put(b"x", "kb", "doc", "image_1.png")
        assert exc_info.value.store == "bucket"
        assert exc_info.value.retryable is False

    async def test_connection_error_is_retryable(self, store, s3):
        s3.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3")
        with pytest.raises(StorageError) as exc_info:
            await store.put(b"x", "kb", "doc", "image_1.png")
        assert exc_info.value.retryable is True

    async def test_failed_put_not_cached(self, store, s3):
        s3.put_object.side_effect = [_client_error(), None]
        with pytest.raises(StorageError):
            await store.put(b"x", "kb", "doc", "image_1.png")
        await store.put(b"x", "kb", "doc", "image_1.png")
        assert s3.put_object.call_count == 2


# ── delete_scope ────────────────────────────────────────────────────


class TestBucketStoreDeleteScope:
    def _paginate(self, s3, keys: list[str], page_size: int = 1000):
        pages = [
            {"Contents": [{"Key": k} for k in keys[i:i + page_size]]}
            for i in range(0, len(keys), page_size)
        ] or [{}]
        s3.get_paginator.return_value.paginate.return_value = pages

    async def test_deletes_everything_under_prefix(self, store, s3):
        self._paginate(s3, ["kb/doc/a.png", "kb/doc/b.jpg"])
        deleted = await store.delete_scope("kb", "doc")
        assert deleted == 2
        s3.get_paginator.return_value.paginate.assert_called_once_with(Bucket="media", Prefix="kb/doc/")
        objects = s3.delete_objects.call_args.kwargs["Delete"]["Objects"]
        assert objects == [{"Key": "kb/doc/a.png"}, {"Key": "kb/doc/b.jpg"}]

    async def test_batches_of_1000(self, store, s3):
        self._paginate(s3, [f"kb/doc/{i}.png" for i in range(2500)])
        assert await store.delete_scope("kb", "doc") == 2500
        sizes = [len(c.kwargs["Delete"]["Objects"]) for c in s3.delete_objects.call_args_list]
        assert sizes == [1000, 1000, 500]

    async def test_empty_scope(self, store, s3):
        self._paginate(s3, [])
        assert await store.delete_scope("kb", "doc") == 0
        s3.delete_objects.assert_not_called()

    async def test_failure_is_logged_not_raised(self, store, s3, caplog):
        s3.get_paginator.side_effect = _client_error()
        with caplog.at_level(logging.WARNING):
            assert await store.delete_scope("kb", "doc") == 0
        assert "failed to delete" in caplog.text

    async def test_put_after_delete_writes_again(self, store, s3):
        await store.put(b"x", "kb", "doc", "image_1.png")
        key = store.object_key(b"x", "kb", "doc", "image_1.png")
        self._paginate(s3, [key])
        await store.delete_scope("kb", "doc")
        await store.put(b"x", "kb", "doc", "image_1.png")
        assert s3.put_object.call_count == 2
