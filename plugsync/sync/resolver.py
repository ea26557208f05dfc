"""
Dependency resolution for plugsync.

Makes the pending action set self-consistent before a batch runs: required
files that would be missing get an action automatically, and anything that
cannot be settled without the user's choice becomes a Conflict.
"""

from dataclasses import dataclass, field
from typing import Optional

from ..core.errors import DependencyConflict
from ..files.collection import Collection
from ..files.record import Action, FileRecord

INSTALL_CANDIDATES = (Action.INSTALL, Action.UPDATE)
UPLOAD_CANDIDATES = (Action.UPLOAD,)


@dataclass
class Conflict:
    """A dependency problem the resolver could not settle on its own."""
    name: str
    message: str
    required_by: list = field(default_factory=list)

    def __str__(self) -> str:
        if self.required_by:
            return f"{self.message} (required by {', '.join(self.required_by)})"
        return self.message


class DependencyResolver:
    """
    Fixed-point dependency resolver.

    Each round asks the collection which records the current action set
    implicates, gives each of them the first admitted candidate action, and
    repeats until nothing new is implicated. A record implicated again after
    it was handled means the graph cannot settle; the resolver records a
    conflict and stops instead of looping.
    """

    def __init__(self, collection: Collection, for_upload: bool = False, max_iterations: Optional[int] = None):
        self.collection = collection
        self.for_upload = for_upload
        self.max_iterations = max_iterations if max_iterations is not None else len(collection) + 1
        self.conflicts: list[Conflict] = []
        self.added: list[FileRecord] = []
        self.iterations = 0

    @property
    def candidates(self) -> tuple:
        return UPLOAD_CANDIDATES if self.for_upload else INSTALL_CANDIDATES

    def resolve(self) -> bool:
        """
        Resolve the collection's action set in place.

        Returns True when the batch may run. On False, self.conflicts says
        why; actions added before the conflict was found are kept so the
        caller can show them.
        """
        self.conflicts = []
        self.added = []
        self.iterations = 0
        handled: set = set()

        while True:
            implicated = self.collection.get_dependencies(self.for_upload)
            if not implicated:
                break
            if self.iterations >= self.max_iterations:
                self.conflicts.append(Conflict(
                    name="",
                    message=f"Dependencies did not settle after {self.iterations} rounds",
                ))
                break
            self.iterations += 1

            progressed = False
            for record in sorted(implicated, key=lambda r: r.name):
                requirers = sorted(r.name for r in implicated[record])
                if record in handled:
                    self._conflict(record, "is required again after it was resolved", requirers)
                    continue
                handled.add(record)
                if record.action != Action.NONE:
                    # An explicit choice the user made; do not override it
                    self._conflict(record, f"is marked for {record.action.name.lower()}", requirers)
                    continue
                if record.set_first_valid_action(self.collection, self.candidates):
                    self.added.append(record)
                    progressed = True
                else:
                    verb = "uploaded" if self.for_upload else "installed"
                    self._conflict(
                        record,
                        f"cannot be {verb} from status {record.status.name}",
                        requirers,
                    )
            if self.conflicts or not progressed:
                break

        if not self.conflicts:
            errors = self.collection.check_consistency()
            if errors:
                for line in errors.splitlines():
                    self.conflicts.append(Conflict(name="", message=line))

        return not self.conflicts

    def resolve_or_raise(self):
        """Resolve, raising DependencyConflict when the batch may not run."""
        if not self.resolve():
            raise DependencyConflict(self.conflicts)

    def _conflict(self, record: FileRecord, reason: str, requirers: list):
        self.conflicts.append(Conflict(
            name=record.name,
            message=f"{record.name} {reason}",
            required_by=requirers,
        ))
