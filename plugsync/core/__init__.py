"""
Core utilities shared by every plugsync module.
"""

from .errors import (
    UpdaterError,
    Canceled,
    ChecksumMismatch,
    DependencyConflict,
    SiteLocked,
    SiteOutOfDate,
    TransportFailure,
    ManifestWriteFailure,
    BatchInProgress,
)
from .progress import ProgressTracker, SilentProgress

__all__ = [
    "UpdaterError",
    "Canceled",
    "ChecksumMismatch",
    "DependencyConflict",
    "SiteLocked",
    "SiteOutOfDate",
    "TransportFailure",
    "ManifestWriteFailure",
    "BatchInProgress",
    "ProgressTracker",
    "SilentProgress",
]
