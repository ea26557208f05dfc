"""
Error types for plugsync.

Whole-batch faults (dependency conflicts, site locks, login failures) are
raised before anything is touched. Per-file faults are collected in the
batch result and reported once at the end.
"""


class UpdaterError(Exception):
    """Base class for all plugsync errors."""


class Canceled(UpdaterError):
    """The caller canceled a running batch. Not a fault."""

    def __init__(self, message: str = "Canceled", result=None):
        super().__init__(message)
        self.result = result


class ChecksumMismatch(UpdaterError):
    """A transferred file does not match the size/checksum in the manifest."""

    def __init__(self, name: str, expected: str, actual: str):
        super().__init__(f"Checksum mismatch for {name}: expected {expected}, got {actual}")
        self.name = name
        self.expected = expected
        self.actual = actual


class DependencyConflict(UpdaterError):
    """Dependency resolution could not converge."""

    def __init__(self, conflicts):
        self.conflicts = list(conflicts)
        lines = [str(c) for c in self.conflicts] or ["unresolved dependencies"]
        super().__init__("\n".join(lines))


class SiteLocked(UpdaterError):
    """Another uploader holds the site lock."""

    def __init__(self, site: str):
        super().__init__(f"Update site '{site}' is busy (locked by another upload)")
        self.site = site


class SiteOutOfDate(UpdaterError):
    """The remote manifest changed since the collection last read it."""

    def __init__(self, site: str, known: int, remote: int):
        super().__init__(
            f"Update site '{site}' changed since last refresh "
            f"(known {known}, remote {remote}); refresh and try again"
        )
        self.site = site
        self.known = known
        self.remote = remote


class TransportFailure(UpdaterError):
    """Login or network failure talking to an update site."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class ManifestWriteFailure(UpdaterError):
    """The batch succeeded in memory but the manifest could not be saved."""

    def __init__(self, path, cause: Exception, result=None):
        super().__init__(f"Could not write manifest {path}: {cause}")
        self.path = path
        self.cause = cause
        self.result = result


class BatchInProgress(UpdaterError):
    """A batch is already running against this collection."""

    def __init__(self):
        super().__init__("Another batch is already running on this collection")
