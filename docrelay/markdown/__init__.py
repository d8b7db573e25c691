"""Markdown image relocation."""

from docrelay.markdown.rewriter import (
    IMAGE_PATTERN,
    MarkdownMediaRewriter,
    ResolvedImage,
    RewriteResult,
    find_image_targets,
    substitute,
)

__all__ = [
    "IMAGE_PATTERN",
    "MarkdownMediaRewriter",
    "ResolvedImage",
    "RewriteResult",
    "find_image_targets",
    "substitute",
]
