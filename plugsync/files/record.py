"""
File records and the status/action state machine.

Every tracked file has a Status derived from checksum comparison and an
Action the user (or the dependency resolver) wants applied. A Status admits
a fixed set of Actions; anything else is refused at assignment time.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from ..core.constants import LIBRARY_PREFIXES


class Action(Enum):
    NONE = "none"
    INSTALL = "install"
    UPDATE = "update"
    UNINSTALL = "uninstall"
    UPLOAD = "upload"
    REMOVE = "remove"


class Status(Enum):
    NOT_INSTALLED = "not_installed"
    INSTALLED = "installed"
    UPDATEABLE = "updateable"
    MODIFIED = "modified"
    OBSOLETE = "obsolete"
    OBSOLETE_UNINSTALLED = "obsolete_uninstalled"
    NEW = "new"
    LOCAL_ONLY = "local_only"

    def valid_actions(self, developer: bool = False) -> tuple:
        """Actions this status admits, NONE first."""
        actions = _USER_ACTIONS[self]
        if developer:
            actions = actions + _DEVELOPER_ACTIONS[self]
        return actions

    def admits(self, action: Action, developer: bool = False) -> bool:
        return action in self.valid_actions(developer)

    @property
    def is_installed(self) -> bool:
        """A copy of the file is present locally."""
        return self in _PRESENT_LOCALLY

    @property
    def is_listed(self) -> bool:
        """The file's update site currently publishes it."""
        return self in _LISTED_REMOTELY


_USER_ACTIONS = {
    Status.NOT_INSTALLED: (Action.NONE, Action.INSTALL),
    Status.INSTALLED: (Action.NONE, Action.UNINSTALL),
    Status.UPDATEABLE: (Action.NONE, Action.UPDATE, Action.UNINSTALL),
    Status.MODIFIED: (Action.NONE, Action.UPDATE, Action.UNINSTALL),
    Status.OBSOLETE: (Action.NONE, Action.UNINSTALL),
    Status.OBSOLETE_UNINSTALLED: (Action.NONE,),
    Status.NEW: (Action.NONE, Action.UNINSTALL),
    Status.LOCAL_ONLY: (Action.NONE, Action.UNINSTALL),
}

# Extra actions admitted when the collection has an uploadable site
_DEVELOPER_ACTIONS = {
    Status.NOT_INSTALLED: (Action.REMOVE,),
    Status.INSTALLED: (Action.UPLOAD, Action.REMOVE),
    Status.UPDATEABLE: (Action.UPLOAD, Action.REMOVE),
    Status.MODIFIED: (Action.UPLOAD, Action.REMOVE),
    Status.OBSOLETE: (Action.UPLOAD,),
    Status.OBSOLETE_UNINSTALLED: (),
    Status.NEW: (Action.UPLOAD,),
    Status.LOCAL_ONLY: (Action.UPLOAD,),
}

_PRESENT_LOCALLY = {
    Status.INSTALLED,
    Status.UPDATEABLE,
    Status.MODIFIED,
    Status.OBSOLETE,
    Status.NEW,
    Status.LOCAL_ONLY,
}

_LISTED_REMOTELY = {
    Status.NOT_INSTALLED,
    Status.INSTALLED,
    Status.UPDATEABLE,
    Status.MODIFIED,
}


@dataclass
class RemoteVersion:
    """What one update site publishes for a file."""
    checksum: str
    timestamp: int = 0
    size: int = 0

    def to_dict(self) -> dict:
        return {"checksum": self.checksum, "timestamp": self.timestamp, "size": self.size}

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteVersion":
        return cls(
            checksum=data.get("checksum", ""),
            timestamp=data.get("timestamp", 0),
            size=data.get("size", 0),
        )


@dataclass(eq=False)
class FileRecord:
    """
    State and metadata for one tracked file.

    Records compare and hash by identity so they can key dependency maps
    while their fields change.
    """
    name: str
    site: Optional[str] = None
    # What the local manifest says was installed
    checksum: str = ""
    timestamp: int = 0
    # What is on disk right now (None when absent or unreadable)
    local_checksum: Optional[str] = None
    local_timestamp: int = 0
    # Per-site published versions
    remote: dict = field(default_factory=dict)
    size: int = 0
    executable: bool = False
    dependencies: set = field(default_factory=set)
    # Checksums of earlier published versions, oldest first
    previous: list = field(default_factory=list)
    status: Status = Status.NOT_INSTALLED
    action: Action = Action.NONE

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def is_library(self) -> bool:
        return self.name.startswith(LIBRARY_PREFIXES)

    @property
    def remote_version(self) -> Optional[RemoteVersion]:
        """The version published by this record's own site."""
        if self.site is None:
            return None
        return self.remote.get(self.site)

    @property
    def remote_checksum(self) -> Optional[str]:
        version = self.remote_version
        return version.checksum if version else None

    @property
    def remote_timestamp(self) -> int:
        version = self.remote_version
        return version.timestamp if version else 0

    @property
    def will_be_installed(self) -> bool:
        """A local copy will exist once the pending action has run."""
        if self.action in (Action.INSTALL, Action.UPDATE):
            return True
        if self.action == Action.UNINSTALL:
            return False
        return self.status.is_installed

    @property
    def will_be_available(self) -> bool:
        """The site will publish this file once the pending action has run."""
        if self.action == Action.UPLOAD:
            return True
        if self.action == Action.REMOVE:
            return False
        return self.status.is_listed

    def matches_previous(self, checksum: Optional[str]) -> bool:
        return bool(checksum) and checksum in self.previous

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def valid_actions(self, collection=None) -> tuple:
        return self.status.valid_actions(_is_developer(collection))

    def is_valid_action(self, action: Action, collection=None) -> bool:
        return self.status.admits(action, _is_developer(collection))

    def set_action(self, collection, action: Action) -> bool:
        """
        Set the desired action.

        Returns False and leaves the record untouched when the current
        status does not admit the action.
        """
        if not self.is_valid_action(action, collection):
            return False
        self.action = action
        return True

    def set_first_valid_action(self, collection, actions: Iterable[Optional[Action]]) -> bool:
        """Commit the first candidate the current status admits."""
        for action in actions:
            if action is not None and self.set_action(collection, action):
                return True
        return False

    def set_no_action(self):
        self.action = Action.NONE

    def set_status(self, status: Status):
        """Set the derived status. The action is left alone."""
        self.status = status

    # ------------------------------------------------------------------
    # Batch outcomes
    # ------------------------------------------------------------------

    def mark_installed(self):
        """The published version is now on disk."""
        version = self.remote_version
        if version is not None:
            self.checksum = version.checksum
            self.timestamp = version.timestamp
            self.size = version.size or self.size
        self.local_checksum = self.checksum
        self.local_timestamp = self.timestamp
        self.status = Status.INSTALLED
        self.action = Action.NONE

    def mark_uninstalled(self):
        """The local copy is gone."""
        self.local_checksum = None
        self.local_timestamp = 0
        self.status = Status.OBSOLETE_UNINSTALLED if not self.status.is_listed else Status.NOT_INSTALLED
        self.action = Action.NONE

    def mark_uploaded(self, site: str, timestamp: int):
        """The local copy is now the version the site publishes."""
        old = self.remote.get(site)
        if old is not None and old.checksum and old.checksum != self.local_checksum:
            if old.checksum not in self.previous:
                self.previous.append(old.checksum)
        self.site = site
        self.checksum = self.local_checksum or self.checksum
        self.timestamp = timestamp
        self.remote[site] = RemoteVersion(self.checksum, timestamp, self.size)
        self.status = Status.INSTALLED
        self.action = Action.NONE

    def mark_removed(self, site: str):
        """The site no longer publishes this file."""
        old = self.remote.pop(site, None)
        if old is not None and old.checksum and old.checksum not in self.previous:
            self.previous.append(old.checksum)
        self.status = Status.OBSOLETE_UNINSTALLED
        self.action = Action.NONE

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def copy(self) -> "FileRecord":
        return FileRecord.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "site": self.site,
            "checksum": self.checksum,
            "timestamp": self.timestamp,
            "local_checksum": self.local_checksum,
            "local_timestamp": self.local_timestamp,
            "remote": {site: v.to_dict() for site, v in self.remote.items()},
            "size": self.size,
            "executable": self.executable,
            "dependencies": sorted(self.dependencies),
            "previous": list(self.previous),
            "status": self.status.value,
            "action": self.action.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileRecord":
        return cls(
            name=data.get("name", ""),
            site=data.get("site"),
            checksum=data.get("checksum", ""),
            timestamp=data.get("timestamp", 0),
            local_checksum=data.get("local_checksum"),
            local_timestamp=data.get("local_timestamp", 0),
            remote={
                site: RemoteVersion.from_dict(v)
                for site, v in data.get("remote", {}).items()
            },
            size=data.get("size", 0),
            executable=data.get("executable", False),
            dependencies=set(data.get("dependencies", [])),
            previous=list(data.get("previous", [])),
            status=Status(data.get("status", Status.NOT_INSTALLED.value)),
            action=Action(data.get("action", Action.NONE.value)),
        )

    def __repr__(self) -> str:
        return f"FileRecord({self.name!r}, {self.status.name}, {self.action.name})"


def _is_developer(collection) -> bool:
    return collection is not None and collection.has_uploadable_sites()


class ActionChoice:
    """
    An ordered list of candidate actions offered as one choice.

    "Install/Update" is one choice: each record gets the first candidate its
    status admits.
    """

    def __init__(self, *candidates: tuple):
        # candidates: (label, Action or None) pairs in priority order
        self.candidates = list(candidates)

    @property
    def actions(self) -> list:
        return [action for _, action in self.candidates]

    def apply(self, record: FileRecord, collection=None) -> bool:
        """Apply to one record. A None action clears the record's action."""
        if self.candidates and self.candidates[0][1] is None:
            record.set_no_action()
            return True
        return record.set_first_valid_action(collection, self.actions)

    def label_for(self, records: Iterable[FileRecord], collection=None) -> Optional[str]:
        """
        Label naming the verbs that would apply to the given records.

        Returns None when no record admits any candidate.
        """
        used = []
        for record in records:
            for label, action in self.candidates:
                if action is None or record.is_valid_action(action, collection):
                    if label not in used:
                        used.append(label)
                    break
        if not used:
            return None
        ordered = [label for label, _ in self.candidates if label in used]
        return "/".join(ordered)
