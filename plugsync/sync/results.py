"""
Batch results shared by the installer and uploader.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class FileResult:
    """Outcome of one file in a batch."""
    name: str
    success: bool
    message: str = ""
    error: Optional[Exception] = None


@dataclass
class BatchResult:
    """
    What a batch did.

    completed: files that reached their terminal state
    deferred: files whose change waits for the next start
    transferred: files that were moved over the wire (uploads)
    errors: per-file failures, reported once at the end
    """
    completed: list = field(default_factory=list)
    deferred: list = field(default_factory=list)
    transferred: list = field(default_factory=list)
    errors: list = field(default_factory=list)
    bytes_done: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, name: str, error: Exception):
        self.errors.append(FileResult(name=name, success=False, message=str(error), error=error))

    def error_names(self) -> list[str]:
        return [e.name for e in self.errors]

    def __str__(self) -> str:
        parts = [f"{len(self.completed)} done"]
        if self.deferred:
            parts.append(f"{len(self.deferred)} deferred until restart")
        if self.errors:
            parts.append(f"{len(self.errors)} failed")
        return ", ".join(parts)
