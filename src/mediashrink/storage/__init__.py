"""Output placement, result recording and storage analytics."""

from mediashrink.storage.analytics import STORAGE_METRIC, compute_storage_snapshot
from mediashrink.storage.manager import StorageManager
from mediashrink.storage.paths import date_subdirectory, shorten_base_name, unique_path

__all__ = [
    "STORAGE_METRIC",
    "StorageManager",
    "compute_storage_snapshot",
    "date_subdirectory",
    "shorten_base_name",
    "unique_path",
]
