"""
Formatting and timestamp utilities for plugsync.
"""

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional, Union


# ============================================================================
# Timestamps
# ============================================================================

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def timestamp_from_epoch(seconds: float) -> int:
    """
    Convert epoch seconds to a YYYYMMDDhhmmss integer (UTC).

    Integers of this form order the same way the instants they represent do,
    so manifests can compare them without parsing.
    """
    stamp = datetime.fromtimestamp(int(seconds), tz=timezone.utc)
    return int(stamp.strftime(TIMESTAMP_FORMAT))


def now_timestamp() -> int:
    """Current time as a YYYYMMDDhhmmss integer."""
    return timestamp_from_epoch(time.time())


def timestamp_to_iso(timestamp: int) -> str:
    """Render a YYYYMMDDhhmmss integer as an ISO 8601 string."""
    if not timestamp:
        return ""
    stamp = datetime.strptime(str(timestamp), TIMESTAMP_FORMAT)
    return stamp.replace(tzinfo=timezone.utc).isoformat()


# ============================================================================
# Cross-platform path utilities
# ============================================================================

def to_posix(path: Union[str, Path]) -> str:
    """
    Convert a path to a posix-style string (forward slashes).

    Works consistently across platforms - use this instead of str(path)
    when storing or comparing record names.
    """
    if isinstance(path, Path):
        return path.as_posix()
    return path.replace("\\", "/")


# ============================================================================
# Size and duration formatting
# ============================================================================

def format_size(size_bytes: int) -> str:
    """Format bytes as human readable string."""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} PB"


def format_duration(seconds: float) -> str:
    """Format seconds as human readable duration."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    else:
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


# ============================================================================
# Sorting utilities
# ============================================================================

def name_sort_key(name: str) -> str:
    """Sort key for case-insensitive name sorting."""
    return name.casefold()


def sort_by_name(items: List[Any], key: Optional[Callable[[Any], str]] = None) -> List[Any]:
    """
    Sort items by name, case-insensitive.

    Args:
        items: List of items to sort
        key: Optional function to extract name from item (default: item itself)
    """
    if key is None:
        return sorted(items, key=name_sort_key)
    return sorted(items, key=lambda x: name_sort_key(key(x)))
