"""Core utilities package.

Pure helpers with no dependencies on the rest of mediashrink: codec
normalization, formatting, datetime handling, filesystem helpers and
subprocess invocation.
"""

from mediashrink.core.codecs import (
    CODEC_EFFICIENCY,
    UNKNOWN_CODEC,
    VIDEO_CODEC_ALIASES,
    CodecEfficiency,
    get_codec_efficiency,
    normalize_codec,
)
from mediashrink.core.datetime_utils import (
    iso_before,
    parse_iso_timestamp,
    utc_now,
    utc_now_iso,
)
from mediashrink.core.file_utils import (
    compute_sha256,
    directory_usage,
    get_file_size,
    iter_files,
    normalize_path,
    remove_file,
)
from mediashrink.core.formatting import (
    format_duration,
    format_file_size,
    get_resolution_label,
    sized,
)
from mediashrink.core.subprocess_utils import run_command

__all__ = [
    "CODEC_EFFICIENCY",
    "UNKNOWN_CODEC",
    "VIDEO_CODEC_ALIASES",
    "CodecEfficiency",
    "compute_sha256",
    "directory_usage",
    "format_duration",
    "format_file_size",
    "get_codec_efficiency",
    "get_file_size",
    "get_resolution_label",
    "iso_before",
    "iter_files",
    "normalize_codec",
    "normalize_path",
    "parse_iso_timestamp",
    "remove_file",
    "run_command",
    "sized",
    "utc_now",
    "utc_now_iso",
]
