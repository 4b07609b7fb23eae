"""Display strings for sizes, durations and resolutions.

Every size in an engine response is reported twice, as raw bytes and as
``format_file_size()`` text; ``sized()`` builds that pair.
"""

_SIZE_UNITS = (("TB", 1024**4), ("GB", 1024**3), ("MB", 1024**2), ("KB", 1024))

# Smallest frame height for each label, tallest first
_RESOLUTION_LABELS = (
    (2160, "4K"),
    (1440, "1440p"),
    (1080, "1080p"),
    (720, "720p"),
    (480, "480p"),
)


def format_file_size(size_bytes: int) -> str:
    """Binary-unit size with one decimal, e.g. ``"4.2 GB"`` or ``"512 B"``.

    Negative sizes keep their sign; inflated outputs are reported that way.
    """
    if size_bytes < 0:
        return "-" + format_file_size(-size_bytes)
    for unit, scale in _SIZE_UNITS:
        if size_bytes >= scale:
            return f"{size_bytes / scale:.1f} {unit}"
    return f"{size_bytes} B"


def sized(size_bytes: int) -> dict[str, int | str]:
    return {"bytes": size_bytes, "formatted": format_file_size(size_bytes)}


def format_duration(seconds: float) -> str:
    """Compact duration: ``"1h 02m"``, ``"3m 05s"`` or ``"12.5s"``."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


def get_resolution_label(width: int | None, height: int | None) -> str:
    """Label a frame size by its height.

    Args:
        width: Frame width; only checked for presence.
        height: Frame height in pixels.

    Returns:
        ``"4K"``, ``"1440p"`` down to ``"480p"``, ``"<height>p"`` below
        that, or ``"unknown"`` when a dimension is missing.
    """
    if width is None or not height or height < 0:
        return "unknown"
    for minimum, label in _RESOLUTION_LABELS:
        if height >= minimum:
            return label
    return f"{height}p"
