"""MediaStore backed by an S3-compatible bucket (AWS S3, Aliyun OSS, MinIO)."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from docrelay.config.models import BucketStoreConfig
from docrelay.errors import StorageError
from docrelay.storage.naming import content_type_for, object_name, resolve_extension, scope_path

logger = logging.getLogger(__name__)

# delete_objects accepts at most 1000 keys per request
_DELETE_BATCH = 1000


class BucketStore:
    """Flat key-value object store that conforms to the MediaStore protocol.

    Keys are ``{key_prefix}{namespace}/{scope}/{hash}{ext}``. boto3 is
    synchronous, so every call runs in a worker thread.
    """

    name = "bucket"

    def __init__(
        self,
        config: BucketStoreConfig,
        client=None,
        **boto_kwargs,
    ) -> None:
        if not config.bucket:
            raise ValueError("Bucket store requires storage.bucket.bucket to be set.")
        self._config = config
        self._bucket = config.bucket
        self._prefix = config.key_prefix
        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=config.endpoint_url,
                region_name=config.region,
                **boto_kwargs,
            )
        self._client = client
        # keys this instance has already written; skips redundant PUTs
        self._written: set[str] = set()

    # -- naming -----------------------------------------------------------

    @property
    def public_base(self) -> str:
        if self._config.public_url:
            return self._config.public_url.rstrip("/")
        if self._config.endpoint_url:
            host = urlsplit(self._config.endpoint_url).netloc or self._config.endpoint_url
            return f"https://{self._bucket}.{host}"
        return f"https://{self._bucket}.s3.{self._config.region}.amazonaws.com"

    def object_key(self, data: bytes, namespace: str, scope: str, filename_hint: str) -> str:
        return f"{self._prefix}{scope_path(namespace, scope)}/{object_name(data, filename_hint)}"

    def public_url(self, key: str) -> str:
        return f"{self.public_base}/{key}"

    def owns(self, url: str) -> bool:
        return url.startswith(self.public_base + "/")

    # -- MediaStore protocol ----------------------------------------------

    async def put(self, data: bytes, namespace: str, scope: str, filename_hint: str) -> str:
        key = self.object_key(data, namespace, scope, filename_hint)
        url = self.public_url(key)
        if key in self._written:
            logger.debug("already stored %s, skipping upload", key)
            return url

        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type_for(resolve_extension(filename_hint)),
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(
                self.name,
                f"put_object failed for {key}: {e}",
                retryable=isinstance(e, BotoCoreError),
            ) from e

        self._written.add(key)
        logger.info("stored %s (%d bytes) -> %s", filename_hint, len(data), url)
        return url

    async def delete_scope(self, namespace: str, scope: str) -> int:
        """Delete every object under the scope prefix. Best effort: never raises."""
        prefix = f"{self._prefix}{scope_path(namespace, scope)}/"
        try:
            return await asyncio.to_thread(self._delete_prefix, prefix)
        except (BotoCoreError, ClientError):
            logger.warning("failed to delete objects under %s", prefix, exc_info=True)
            return 0

    def _delete_prefix(self, prefix: str) -> int:
        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))

        for start in range(0, len(keys), _DELETE_BATCH):
            batch = keys[start:start + _DELETE_BATCH]
            self._client.delete_objects(
                Bucket=self._bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )

        self._written.difference_update(keys)
        logger.info("deleted %d object(s) under %s", len(keys), prefix)
        return len(keys)
