"""Result archive extraction and markdown discovery."""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path

logger = logging.getLogger(__name__)


def extract_archive(archive: Path, dest: Path) -> Path:
    """Extract a zip archive into *dest*, refusing entries that escape it.

    Raises zipfile.BadZipFile for corrupt archives and ValueError for
    path traversal attempts.
    """
    dest.mkdir(parents=True, exist_ok=True)
    root = dest.resolve()
    with zipfile.ZipFile(archive) as zf:
        for member in zf.infolist():
            target = (root / member.filename).resolve()
            # Guard against path traversal escaping dest
            if not target.is_relative_to(root):
                raise ValueError(f"archive entry escapes extraction dir: {member.filename}")
        zf.extractall(root)
    logger.debug("extracted %s into %s", archive, root)
    return root


def find_markdown(root: Path) -> Path | None:
    """First ``*.md`` file in a depth-first walk of *root* (entries sorted by name)."""
    for entry in sorted(root.iterdir()):
        if entry.is_file() and entry.name.endswith(".md"):
            return entry
        if entry.is_dir():
            found = find_markdown(entry)
            if found is not None:
                return found
    return None
