"""Media introspection via ffprobe."""

from mediashrink.introspector.ffprobe import FFprobeIntrospector
from mediashrink.introspector.interface import (
    MediaIntrospectionError,
    MediaIntrospector,
    UnavailableIntrospector,
)
from mediashrink.introspector.parsers import parse_ffprobe_output
from mediashrink.introspector.types import MediaInfo

__all__ = [
    "FFprobeIntrospector",
    "MediaInfo",
    "MediaIntrospectionError",
    "MediaIntrospector",
    "UnavailableIntrospector",
    "parse_ffprobe_output",
]
