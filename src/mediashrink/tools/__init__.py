"""External tool helpers: discovery, capability probing, progress parsing."""

from mediashrink.tools.detection import (
    ToolNotFoundError,
    find_tool,
    get_system_info,
    probe_hw_encoder,
    require_tool,
)
from mediashrink.tools.ffmpeg_progress import (
    EncodeProgress,
    ProgressStreamParser,
    parse_progress_block,
    parse_progress_line,
)

__all__ = [
    "EncodeProgress",
    "ProgressStreamParser",
    "ToolNotFoundError",
    "find_tool",
    "get_system_info",
    "parse_progress_block",
    "parse_progress_line",
    "probe_hw_encoder",
    "require_tool",
]
