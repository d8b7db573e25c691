"""Content-addressed naming for stored images."""

from __future__ import annotations

import hashlib
import re
from urllib.parse import urlsplit

DEFAULT_EXTENSION = ".png"

# 16 bytes of SHA-256 keeps file names short; 128 bits is still far beyond
# any realistic per-scope image count for accidental collisions.
HASH_BYTES = 16

_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]{2,5}$")
_SEGMENT_RE = re.compile(r"[^\w\-]", re.UNICODE)

CONTENT_TYPES: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
}


def content_hash(data: bytes) -> str:
    """First 16 bytes of SHA-256 over *data*, as 32 lowercase hex chars."""
    return hashlib.sha256(data).digest()[:HASH_BYTES].hex()


def resolve_extension(name: str) -> str:
    """Extension of *name* if it looks like one (2-5 alphanumerics), else ``.png``.

    Query strings and fragments are ignored and the original case is kept,
    so ``pic.JPEG?sig=abc`` yields ``.JPEG``.
    """
    path = urlsplit(name).path if "://" in name else name.split("?", 1)[0].split("#", 1)[0]
    last = path.rstrip("/").rsplit("/", 1)[-1]
    match = _EXTENSION_RE.search(last)
    if match and match.start() > 0:
        return match.group(0)
    return DEFAULT_EXTENSION


def content_type_for(extension: str) -> str:
    """MIME type for an extension, case-insensitive."""
    return CONTENT_TYPES.get(extension.lower(), "application/octet-stream")


def sanitize_segment(value: str | None) -> str:
    """Make a namespace/scope value safe for use as a single key segment."""
    if not value:
        return "default"
    return _SEGMENT_RE.sub("_", value)


def object_name(data: bytes, filename_hint: str) -> str:
    """``{content_hash}{extension}`` for *data*."""
    return content_hash(data) + resolve_extension(filename_hint)


def scope_path(namespace: str, scope: str) -> str:
    """``{namespace}/{scope}`` with both segments sanitized."""
    return f"{sanitize_segment(namespace)}/{sanitize_segment(scope)}"
