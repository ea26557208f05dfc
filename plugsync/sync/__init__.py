"""
Sync operations: checksumming, dependency resolution and the batch
executors that install from and upload to update sites.
"""

from .checksum import Checksummer, compute_checksum, derive_status, find_read_only
from .resolver import Conflict, DependencyResolver
from .downloader import DownloadResult, DownloadTask, FileDownloader, cleanup_staging
from .purger import PendingWork, apply_pending
from .results import BatchResult, FileResult
from .installer import Installer
from .uploader import Uploader, upload_order
from .worker import BatchWorker

__all__ = [
    "Checksummer",
    "compute_checksum",
    "derive_status",
    "find_read_only",
    "Conflict",
    "DependencyResolver",
    "DownloadResult",
    "DownloadTask",
    "FileDownloader",
    "cleanup_staging",
    "PendingWork",
    "apply_pending",
    "BatchResult",
    "FileResult",
    "Installer",
    "Uploader",
    "upload_order",
    "BatchWorker",
]
