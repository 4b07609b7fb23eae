"""Configuration package for mediashrink.

Provides dataclass configuration models and a loader that layers the TOML
config file, MEDIASHRINK_* environment variables and explicit overrides.
"""

from mediashrink.config.env import EnvReader
from mediashrink.config.loader import (
    ConfigError,
    apply_overrides,
    clear_config_cache,
    get_config,
    get_data_dir,
    get_default_config_path,
    get_default_db_path,
    load_config_file,
    validate_config,
)
from mediashrink.config.models import (
    AnalyzerConfig,
    CleanupConfig,
    EngineConfig,
    JobsConfig,
    LoggingConfig,
    ProgressConfig,
    StorageConfig,
    ToolPathsConfig,
    TranscoderConfig,
)

__all__ = [
    "AnalyzerConfig",
    "CleanupConfig",
    "ConfigError",
    "EngineConfig",
    "EnvReader",
    "JobsConfig",
    "LoggingConfig",
    "ProgressConfig",
    "StorageConfig",
    "ToolPathsConfig",
    "TranscoderConfig",
    "apply_overrides",
    "clear_config_cache",
    "get_config",
    "get_data_dir",
    "get_default_config_path",
    "get_default_db_path",
    "load_config_file",
    "validate_config",
]
