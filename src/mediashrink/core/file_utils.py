"""Filesystem helpers shared by the transcoder, storage manager and cleanup."""

from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


def compute_sha256(path: Path) -> str:
    """Compute the sha256 hex digest of a file, streaming in 1 MiB chunks."""
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def get_file_size(path: Path) -> int | None:
    """Return the size of a file in bytes, or None if it cannot be read."""
    try:
        return path.stat().st_size
    except OSError:
        return None


def iter_files(root: Path) -> Iterator[Path]:
    """Yield every regular file below ``root``.

    Missing roots yield nothing. Directories that vanish or cannot be read
    while walking are skipped with a debug log line.
    """
    if not root.is_dir():
        return

    def _on_error(error: OSError) -> None:
        logger.debug("Skipping unreadable directory: %s", error)

    for dirpath, _dirnames, filenames in os.walk(root, onerror=_on_error):
        for name in filenames:
            path = Path(dirpath) / name
            if path.is_file():
                yield path


def directory_usage(root: Path) -> tuple[int, int]:
    """Return ``(total_bytes, file_count)`` for all files below ``root``."""
    total = 0
    count = 0
    for path in iter_files(root):
        size = get_file_size(path)
        if size is None:
            continue
        total += size
        count += 1
    return total, count


def remove_file(path: Path) -> int:
    """Delete a file and return the number of bytes freed.

    Returns 0 when the file was already gone.

    Raises:
        OSError: If the file exists but cannot be removed.
    """
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        return 0
    path.unlink(missing_ok=True)
    return size


def normalize_path(path: Path | str) -> str:
    """Resolve a path to the canonical string form used for comparisons."""
    return str(Path(path).expanduser().resolve())
