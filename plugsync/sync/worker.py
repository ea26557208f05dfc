"""
Background execution of batches.

A BatchWorker runs at most one batch at a time for its collection, on a
single worker thread, so a caller (a UI, a CLI waiting on ESC) can keep
reading progress and request cancellation while the batch runs.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from ..core.errors import BatchInProgress
from ..core.progress import ProgressTracker
from ..files.collection import Collection
from .installer import Installer
from .uploader import Uploader


class BatchWorker:
    """Single-thread executor bound to one collection."""

    def __init__(self, collection: Collection, root: Path):
        self.collection = collection
        self.root = Path(root)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="plugsync-batch")
        self._lock = threading.Lock()
        self._current: Optional[Future] = None

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._current is not None and not self._current.done()

    def submit(self, fn) -> Future:
        """Run any callable as this collection's batch."""
        with self._lock:
            if self._current is not None and not self._current.done():
                raise BatchInProgress()
            if self.collection.batch_running:
                raise BatchInProgress()
            self._current = self._executor.submit(fn)
            return self._current

    def submit_install(self, progress: Optional[ProgressTracker] = None, **kwargs) -> Future:
        """Run an Installer batch. The future yields its BatchResult."""
        installer = Installer(self.collection, self.root, progress, **kwargs)
        return self.submit(installer.start)

    def submit_upload(self, site_name: str, progress: Optional[ProgressTracker] = None, **kwargs) -> Future:
        """Run an Uploader batch for one site. The future yields its BatchResult."""
        uploader = Uploader(self.collection, site_name, self.root, progress=progress, **kwargs)
        return self.submit(uploader.upload)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()
        return False
