"""Output path naming."""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

HASH_LENGTH = 8
TITLE_LENGTH = 30


def shorten_base_name(base_name: str, max_length: int) -> str:
    """Shorten a long file stem to ``<title>-<hash>``.

    The title is the first dot-separated segment (release names such as
    ``Some.Movie.2001.1080p.BluRay`` keep ``Some``), truncated to 30
    characters; the hash is the first 8 hex digits of the md5 of the full
    stem, so distinct long names stay distinct.

    Args:
        base_name: File name without extension.
        max_length: Names up to this length are returned unchanged.

    Returns:
        The original or shortened stem.
    """
    if len(base_name) <= max_length:
        return base_name
    title = base_name.split(".")[0] or "video"
    digest = hashlib.md5(  # nosec B324 - naming only, not security
        base_name.encode("utf-8")
    ).hexdigest()[:HASH_LENGTH]
    return f"{title[:TITLE_LENGTH]}-{digest}"


def date_subdirectory(now: datetime) -> Path:
    """``YYYY/MM`` relative directory for date-organised outputs."""
    return Path(f"{now.year:04d}") / f"{now.month:02d}"


def unique_path(
    path: Path, is_taken: Callable[[Path], bool] | None = None
) -> Path:
    """Return ``path``, or the first free ``<stem>_<n><suffix>`` sibling.

    Args:
        path: Preferred path.
        is_taken: Decides whether a candidate is in use; defaults to
            checking the filesystem.
    """
    taken = is_taken or Path.exists
    if not taken(path):
        return path
    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        if not taken(candidate):
            return candidate
        counter += 1
