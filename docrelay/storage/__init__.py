"""Permanent image storage backends."""

import os

from docrelay.config.models import StorageConfig
from docrelay.storage.base import MediaStore
from docrelay.storage.bucket import BucketStore
from docrelay.storage.github import GitHubStore
from docrelay.storage.naming import content_hash, resolve_extension, sanitize_segment

STORE_TAGS = ("bucket", "github")


def create_media_store(config: StorageConfig, provider: str | None = None) -> MediaStore:
    """Create a media store for *provider* (defaults to config.provider).

    Resolves credentials from the environment variables named in config.
    """
    tag = provider or config.provider
    if tag == "bucket":
        boto_kwargs = {}
        key_id = os.environ.get(config.bucket.access_key_id_env)
        secret = os.environ.get(config.bucket.secret_access_key_env)
        if key_id and secret:
            boto_kwargs = {"aws_access_key_id": key_id, "aws_secret_access_key": secret}
        return BucketStore(config.bucket, **boto_kwargs)
    if tag == "github":
        token = os.environ.get(config.github.token_env, "")
        if not token:
            raise ValueError(
                f"GitHub token not found. Set the {config.github.token_env} environment variable."
            )
        return GitHubStore(config.github, token=token)
    raise ValueError(
        f"Unsupported storage provider: {tag!r}. Supported: {', '.join(STORE_TAGS)}"
    )


__all__ = [
    "BucketStore",
    "GitHubStore",
    "MediaStore",
    "STORE_TAGS",
    "content_hash",
    "create_media_store",
    "resolve_extension",
    "sanitize_segment",
]
