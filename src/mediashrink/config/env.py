"""Typed access to ``MEDIASHRINK_*`` environment variables.

Pass ``env=`` to read from a plain dict instead of os.environ in tests.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})


class EnvReader:
    """Reads and converts environment variables.

    Unset variables yield the caller's default. Numbers that fail to parse
    are logged and also yield the default, so a typo in the environment
    never stops the engine from starting.

    Example:
        reader = EnvReader(env={"MEDIASHRINK_MAX_CONCURRENT_JOBS": "4"})
        reader.get_int("MEDIASHRINK_MAX_CONCURRENT_JOBS", 2)  # 4
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env: Mapping[str, str] = os.environ if env is None else env

    def _number(
        self, var: str, convert: Callable[[str], T], kind: str, default: T | None
    ) -> T | None:
        raw = self._env.get(var)
        if raw is None:
            return default
        try:
            return convert(raw)
        except ValueError:
            logger.warning("Invalid %s value for %s: %s", kind, var, raw)
            return default

    def get_str(self, var: str, default: str | None = None) -> str | None:
        return self._env.get(var, default)

    def get_int(self, var: str, default: int | None = None) -> int | None:
        return self._number(var, int, "integer", default)

    def get_float(self, var: str, default: float | None = None) -> float | None:
        return self._number(var, float, "float", default)

    def get_bool(self, var: str, default: bool | None = None) -> bool | None:
        """``true``, ``1``, ``yes`` and ``on`` in any case; anything else is False."""
        raw = self._env.get(var)
        if raw is None:
            return default
        return raw.strip().casefold() in _TRUE_VALUES

    def get_path(self, var: str, default: Path | None = None) -> Path | None:
        """User-expanded path; empty values count as unset."""
        raw = self._env.get(var)
        return Path(raw).expanduser() if raw else default

    def get_list(
        self, var: str, separator: str = ",", default: list[str] | None = None
    ) -> list[str] | None:
        """Split on ``separator``, stripping items and dropping empty ones."""
        raw = self._env.get(var)
        if raw is None:
            return default
        items = (item.strip() for item in raw.split(separator))
        return [item for item in items if item]
