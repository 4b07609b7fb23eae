"""Configuration loader with precedence handling.

Configuration is loaded with the following precedence (highest to lowest):
1. Explicit overrides (CLI options, passed directly to get_config)
2. Environment variables (MEDIASHRINK_*)
3. Config file (~/.mediashrink/config.toml)
4. Default values

Environment variables:
- MEDIASHRINK_CONFIG_PATH: Path to config file (overrides default location)
- MEDIASHRINK_DATA_DIR: Path to data directory (overrides ~/.mediashrink/)
- MEDIASHRINK_DATABASE_PATH: Path to database file
- MEDIASHRINK_STORE_BACKEND: "sqlite" or "memory"
- MEDIASHRINK_FFMPEG_PATH / MEDIASHRINK_FFPROBE_PATH: Tool paths
- MEDIASHRINK_MAX_CONCURRENT_JOBS, MEDIASHRINK_MAX_ATTEMPTS, ...: see _ENV_FIELDS
"""

from __future__ import annotations

import logging
import os
import threading
import tomllib
from dataclasses import fields, is_dataclass, replace
from pathlib import Path
from typing import Any

from mediashrink.config.env import EnvReader
from mediashrink.config.models import EngineConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".mediashrink"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

# (section, field) -> (env var, kind)
_ENV_FIELDS: dict[tuple[str, str], tuple[str, str]] = {
    ("", "database_path"): ("MEDIASHRINK_DATABASE_PATH", "path"),
    ("", "store_backend"): ("MEDIASHRINK_STORE_BACKEND", "str"),
    ("tools", "ffmpeg"): ("MEDIASHRINK_FFMPEG_PATH", "path"),
    ("tools", "ffprobe"): ("MEDIASHRINK_FFPROBE_PATH", "path"),
    ("jobs", "max_concurrent_jobs"): ("MEDIASHRINK_MAX_CONCURRENT_JOBS", "int"),
    ("jobs", "max_attempts"): ("MEDIASHRINK_MAX_ATTEMPTS", "int"),
    ("jobs", "max_queue_size"): ("MEDIASHRINK_MAX_QUEUE_SIZE", "int"),
    ("jobs", "default_qualities"): ("MEDIASHRINK_DEFAULT_QUALITIES", "list"),
    ("analyzer", "min_file_size_mb"): ("MEDIASHRINK_MIN_FILE_SIZE_MB", "float"),
    ("analyzer", "min_compression_percent"): (
        "MEDIASHRINK_MIN_COMPRESSION_PERCENT",
        "float",
    ),
    ("analyzer", "prevent_data_inflation"): (
        "MEDIASHRINK_PREVENT_DATA_INFLATION",
        "bool",
    ),
    ("transcoder", "enable_gpu"): ("MEDIASHRINK_ENABLE_GPU", "bool"),
    ("transcoder", "gpu_device"): ("MEDIASHRINK_GPU_DEVICE", "int"),
    ("transcoder", "gpu_preset"): ("MEDIASHRINK_GPU_PRESET", "str"),
    ("transcoder", "vp9_speed"): ("MEDIASHRINK_VP9_SPEED", "int"),
    ("storage", "output_directory"): ("MEDIASHRINK_OUTPUT_DIR", "path"),
    ("storage", "temp_directory"): ("MEDIASHRINK_TEMP_DIR", "path"),
    ("storage", "chunk_directory"): ("MEDIASHRINK_CHUNK_DIR", "path"),
    ("storage", "max_storage_gb"): ("MEDIASHRINK_MAX_STORAGE_GB", "float"),
    ("storage", "organize_by_date"): ("MEDIASHRINK_ORGANIZE_BY_DATE", "bool"),
    ("cleanup", "enabled"): ("MEDIASHRINK_CLEANUP_ENABLED", "bool"),
    ("cleanup", "interval_seconds"): ("MEDIASHRINK_CLEANUP_INTERVAL", "float"),
    ("logging", "level"): ("MEDIASHRINK_LOG_LEVEL", "str"),
    ("logging", "format"): ("MEDIASHRINK_LOG_FORMAT", "str"),
    ("logging", "file"): ("MEDIASHRINK_LOG_FILE", "path"),
}

_PATH_FIELDS = frozenset(
    {
        "database_path",
        "ffmpeg",
        "ffprobe",
        "output_directory",
        "temp_directory",
        "chunk_directory",
        "media_root",
        "file",
    }
)

# Cache for loaded config files (path -> (parsed dict, mtime))
_config_cache: dict[Path, tuple[dict, float]] = {}
_config_cache_lock = threading.Lock()


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""


def get_default_config_path(env_reader: EnvReader | None = None) -> Path:
    """Get the config file path, honoring MEDIASHRINK_CONFIG_PATH."""
    reader = env_reader or EnvReader()
    return reader.get_path("MEDIASHRINK_CONFIG_PATH") or DEFAULT_CONFIG_FILE


def get_data_dir(env_reader: EnvReader | None = None) -> Path:
    """Get the data directory (database, logs), honoring MEDIASHRINK_DATA_DIR."""
    reader = env_reader or EnvReader()
    return reader.get_path("MEDIASHRINK_DATA_DIR") or DEFAULT_CONFIG_DIR


def get_default_db_path(env_reader: EnvReader | None = None) -> Path:
    """Return the default database path inside the data directory."""
    return get_data_dir(env_reader) / "mediashrink.db"


def load_toml_file(path: Path, *, strict: bool = False) -> dict[str, Any]:
    """Parse a TOML file with tomllib.

    Args:
        path: Path to the TOML file.
        strict: If True, raise ConfigError on parse or read failures.

    Returns:
        Parsed dict. Empty dict if the file does not exist, or on errors
        when strict is False.

    Raises:
        ConfigError: When strict=True and the file cannot be read or parsed.
    """
    if not path.exists():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        if strict:
            raise ConfigError(f"Cannot parse config file {path}: {e}") from e
        logger.warning("Ignoring unparseable config file %s: %s", path, e)
        return {}


def load_config_file(path: Path | None = None, *, strict: bool = False) -> dict:
    """Load configuration from TOML file with mtime-based caching.

    Thread-safe: uses a lock to protect concurrent access to the cache.

    Args:
        path: Path to config file. If None, uses default location.
        strict: If True, raise ConfigError on parse failures.

    Returns:
        Parsed configuration dict. Empty dict if file doesn't exist.
    """
    if path is None:
        path = get_default_config_path()

    try:
        current_mtime = path.stat().st_mtime
    except FileNotFoundError:
        current_mtime = 0.0

    with _config_cache_lock:
        cached = _config_cache.get(path)
        if cached is not None and cached[1] == current_mtime:
            return cached[0]

        result = load_toml_file(path, strict=strict)
        _config_cache[path] = (result, current_mtime)
        return result


def clear_config_cache() -> None:
    """Clear the config file cache. Primarily useful for testing."""
    with _config_cache_lock:
        _config_cache.clear()


def _coerce(name: str, value: Any) -> Any:
    if name in _PATH_FIELDS and isinstance(value, str):
        return Path(value).expanduser()
    return value


def _apply_values(target: Any, values: dict[str, Any], section: str) -> Any:
    """Return a copy of dataclass ``target`` with ``values`` applied.

    Unknown keys are logged and ignored. Nested dicts are applied to nested
    dataclass sections. Validation runs through the dataclass __post_init__.
    """
    known = {f.name for f in fields(target)}
    changes: dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            logger.warning("Unknown config key ignored: %s.%s", section or "root", key)
            continue
        current = getattr(target, key)
        if is_dataclass(current) and isinstance(value, dict):
            changes[key] = _apply_values(current, value, key)
        elif value is not None:
            changes[key] = _coerce(key, value)
    if not changes:
        return target
    try:
        return replace(target, **changes)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration in [{section or 'root'}]: {e}") from e


def apply_overrides(config: EngineConfig, overrides: dict[str, Any]) -> EngineConfig:
    """Return a copy of ``config`` with TOML-shaped ``overrides`` applied.

    Raises:
        ConfigError: A value fails validation.
    """
    return _apply_values(config, overrides, "")


def _env_values(reader: EnvReader) -> dict[str, Any]:
    values: dict[str, Any] = {}
    getters = {
        "str": reader.get_str,
        "int": reader.get_int,
        "float": reader.get_float,
        "bool": reader.get_bool,
        "path": reader.get_path,
        "list": reader.get_list,
    }
    for (section, name), (var, kind) in _ENV_FIELDS.items():
        value = getters[kind](var)
        if value is None:
            continue
        if section:
            values.setdefault(section, {})[name] = value
        else:
            values[name] = value
    return values


def get_config(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
    env_reader: EnvReader | None = None,
    *,
    strict: bool = False,
) -> EngineConfig:
    """Get mediashrink configuration with full precedence handling.

    Args:
        config_path: Path to config file (overrides MEDIASHRINK_CONFIG_PATH).
        overrides: Explicit values, shaped like the TOML file
            (e.g. ``{"jobs": {"max_concurrent_jobs": 4}}``).
        env_reader: Optional EnvReader for testing (uses os.environ if None).
        strict: If True, raise ConfigError on config file parse failures.

    Returns:
        EngineConfig with merged configuration.

    Raises:
        ConfigError: If a layer contains invalid values, or the file cannot
            be parsed when strict=True.
    """
    reader = env_reader or EnvReader()
    file_config = load_config_file(
        config_path or get_default_config_path(reader), strict=strict
    )

    config = EngineConfig()
    config = _apply_values(config, file_config, "")
    config = _apply_values(config, _env_values(reader), "")
    if overrides:
        config = apply_overrides(config, overrides)

    if config.database_path is None and config.store_backend == "sqlite":
        config = replace(config, database_path=get_default_db_path(reader))
    return config


def validate_config(config: EngineConfig) -> list[str]:
    """Validate cross-field configuration constraints.

    Args:
        config: The configuration to validate.

    Returns:
        List of error strings. Empty list means configuration is valid.
    """
    from mediashrink.executor.presets import QUALITY_PRESETS

    errors: list[str] = []

    for quality in config.jobs.default_qualities:
        if quality not in QUALITY_PRESETS:
            errors.append(f"Unknown default quality: {quality}")
    for quality in config.analyzer.candidate_qualities:
        if quality not in QUALITY_PRESETS:
            errors.append(f"Unknown candidate quality: {quality}")

    output_dir = config.storage.output_directory.resolve()
    for name in ("temp_directory", "chunk_directory"):
        other = getattr(config.storage, name).resolve()
        if other == output_dir or output_dir in other.parents:
            errors.append(
                f"storage.{name} must not be inside the output directory "
                "(orphan cleanup would delete its files)"
            )

    for tool in ("ffmpeg", "ffprobe"):
        path = getattr(config.tools, tool)
        if path is not None and not os.access(path, os.X_OK):
            errors.append(f"Configured {tool} is not executable: {path}")

    return errors
