"""
Progress tracking for batch operations.

A progress sink receives a task title, repeated (done, total, label) ticks
and a terminal done() or canceled() call. It also carries the cooperative
cancellation flag that executors check between files.
"""

import threading


class ProgressTracker:
    """Base class for thread-safe progress tracking."""

    def __init__(self):
        self.lock = threading.Lock()
        self._closed = False
        self._cancelled = False
        self.title = ""
        self.done_count = 0
        self.total_count = 0
        self.label = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def closed(self) -> bool:
        return self._closed

    def cancel(self):
        """Signal cancellation."""
        self._cancelled = True

    def set_title(self, title: str):
        """Start a new task."""
        with self.lock:
            self.title = title
            self.done_count = 0
            self.total_count = 0
            self.label = ""

    def update(self, done: int, total: int, label: str = ""):
        """Report progress. Values never go backwards within one task."""
        with self.lock:
            self.done_count = max(self.done_count, done)
            self.total_count = total
            self.label = label

    def write(self, msg: str):
        """Write a message (thread-safe)."""
        with self.lock:
            print(msg)

    def done(self):
        """The task finished."""
        self.close()

    def canceled(self):
        """The task stopped because it was canceled."""
        self.close()

    def close(self):
        """Close the progress tracker."""
        with self.lock:
            self._closed = True


class SilentProgress(ProgressTracker):
    """Progress sink that records ticks without printing anything."""

    def __init__(self):
        super().__init__()
        self.messages: list[str] = []
        self.ticks: list[tuple[int, int, str]] = []

    def update(self, done: int, total: int, label: str = ""):
        super().update(done, total, label)
        with self.lock:
            self.ticks.append((self.done_count, total, label))

    def write(self, msg: str):
        with self.lock:
            self.messages.append(msg)
