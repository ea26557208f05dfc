"""
The collection of tracked files and the update sites they come from.

The Collection owns every FileRecord. Resolvers and executors borrow it for
the duration of one operation; nothing keeps a module-level reference.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from ..core.errors import BatchInProgress
from ..core.formatting import format_size
from .record import Action, FileRecord, Status


@dataclass
class UpdateSite:
    """Connection metadata for one update site."""
    name: str
    url: str
    upload_url: str = ""
    username: str = ""
    # Timestamp of the site manifest when it was last read
    timestamp: int = 0

    @property
    def is_uploadable(self) -> bool:
        return bool(self.upload_url)

    def to_dict(self) -> dict:
        d = {
            "name": self.name,
            "url": self.url,
            "timestamp": self.timestamp,
        }
        if self.upload_url:
            d["upload_url"] = self.upload_url
        if self.username:
            d["username"] = self.username
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "UpdateSite":
        return cls(
            name=data.get("name", ""),
            url=data.get("url", ""),
            upload_url=data.get("upload_url", ""),
            username=data.get("username", ""),
            timestamp=data.get("timestamp", 0),
        )


class FilesView:
    """
    A lazy, filtered view over records.

    Views never copy; iterating re-evaluates the predicate against the
    underlying collection, so a view always reflects current state.
    """

    def __init__(self, source: Iterable[FileRecord], predicate: Optional[Callable[[FileRecord], bool]] = None):
        self._source = source
        self._predicate = predicate

    def __iter__(self) -> Iterator[FileRecord]:
        for record in self._source:
            if self._predicate is None or self._predicate(record):
                yield record

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __bool__(self) -> bool:
        return any(True for _ in self)

    def filter(self, predicate: Callable[[FileRecord], bool]) -> "FilesView":
        return FilesView(self, predicate)

    def matching(self, search: str) -> "FilesView":
        """Records whose name contains the search text (case-insensitive)."""
        needle = search.strip().casefold()
        if not needle:
            return self
        return self.filter(lambda r: needle in r.name.casefold())

    def names(self) -> list[str]:
        return [r.name for r in self]


class DependencyMap(dict):
    """Implicated record -> set of records that drag it into the batch."""

    def add(self, required: FileRecord, requirer: FileRecord):
        self.setdefault(required, set()).add(requirer)

    def names(self) -> dict[str, list[str]]:
        return {
            required.name: sorted(r.name for r in requirers)
            for required, requirers in self.items()
        }

    def __str__(self) -> str:
        lines = []
        for name, requirers in sorted(self.names().items()):
            lines.append(f"{name} (required by {', '.join(requirers)})")
        return "\n".join(lines)


@dataclass
class ChangeSummary:
    """Counts and sizes of the pending changes."""
    install: int = 0
    uninstall: int = 0
    upload: int = 0
    remove: int = 0
    implicated: int = 0
    bytes_to_download: int = 0
    bytes_to_upload: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.install or self.uninstall or self.upload or self.remove)

    def __str__(self) -> str:
        parts = []
        if self.install:
            extra = f"+{self.implicated}" if self.implicated else ""
            parts.append(f"install/update: {self.install}{extra} ({format_size(self.bytes_to_download)})")
        if self.uninstall:
            parts.append(f"uninstall: {self.uninstall}")
        if self.upload:
            parts.append(f"upload: {self.upload} ({format_size(self.bytes_to_upload)})")
        if self.remove:
            parts.append(f"remove: {self.remove}")
        return " ".join(parts) if parts else "no changes"


class Collection:
    """
    Registry of all tracked files, indexed by name, plus the update sites.

    Iteration walks a snapshot of the records, so readers tolerate a batch
    mutating the collection underneath them.
    """

    def __init__(self, store=None):
        self._files: dict[str, FileRecord] = {}
        self.sites: dict[str, UpdateSite] = {}
        # ManifestStore used by write(); None for scratch collections
        self.store = store
        self._batch_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Mapping protocol
    # ------------------------------------------------------------------

    def __iter__(self) -> Iterator[FileRecord]:
        return iter(list(self._files.values()))

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, name) -> bool:
        if isinstance(name, FileRecord):
            return self._files.get(name.name) is name
        return name in self._files

    def __getitem__(self, name: str) -> FileRecord:
        return self._files[name]

    def get(self, name: str) -> Optional[FileRecord]:
        return self._files.get(name)

    def add(self, record: FileRecord) -> FileRecord:
        """Add or replace a record. Its site must be known (or None)."""
        if record.site is not None and record.site not in self.sites:
            raise ValueError(f"{record.name} belongs to unknown update site '{record.site}'")
        self._files[record.name] = record
        return record

    def remove(self, record) -> None:
        name = record.name if isinstance(record, FileRecord) else record
        self._files.pop(name, None)

    def names(self) -> list[str]:
        return list(self._files)

    # ------------------------------------------------------------------
    # Update sites
    # ------------------------------------------------------------------

    def add_update_site(self, name: str, url: str, upload_url: str = "", username: str = "",
                        timestamp: int = 0) -> UpdateSite:
        """Add or replace an update site."""
        site = UpdateSite(name=name, url=url, upload_url=upload_url, username=username, timestamp=timestamp)
        self.sites[name] = site
        return site

    def remove_update_site(self, name: str):
        """
        Forget an update site.

        Its records that are installed become local-only; the rest are
        dropped, since nothing publishes them any more.
        """
        self.sites.pop(name, None)
        for record in self:
            record.remote.pop(name, None)
            if record.site != name:
                continue
            if record.status.is_installed:
                record.site = None
                record.set_status(Status.LOCAL_ONLY)
                record.set_no_action()
            else:
                self.remove(record)

    def get_update_site(self, name: str) -> Optional[UpdateSite]:
        return self.sites.get(name)

    def update_site_names(self) -> list[str]:
        return list(self.sites)

    def has_uploadable_sites(self) -> bool:
        return any(site.is_uploadable for site in self.sites.values())

    def site_names_to_upload(self) -> list[str]:
        """Uploadable sites that the pending UPLOAD/REMOVE actions target."""
        names = []
        for record in self.to_upload_or_remove():
            if record.site is None:
                candidates = [s.name for s in self.sites.values() if s.is_uploadable]
            else:
                candidates = [record.site]
            for name in candidates:
                site = self.sites.get(name)
                if site is not None and site.is_uploadable and name not in names:
                    names.append(name)
        return names

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def filter(self, predicate: Callable[[FileRecord], bool]) -> FilesView:
        return FilesView(self, predicate)

    def view(self) -> FilesView:
        return FilesView(self)

    def matching(self, search: str) -> FilesView:
        return self.view().matching(search)

    def for_update_site(self, name: str) -> FilesView:
        return self.filter(lambda r: r.site == name)

    def with_action(self, *actions: Action) -> FilesView:
        return self.filter(lambda r: r.action in actions)

    def with_status(self, *statuses: Status) -> FilesView:
        return self.filter(lambda r: r.status in statuses)

    def to_install_or_update(self) -> FilesView:
        return self.with_action(Action.INSTALL, Action.UPDATE)

    def to_uninstall(self) -> FilesView:
        return self.with_action(Action.UNINSTALL)

    def to_upload(self) -> FilesView:
        return self.with_action(Action.UPLOAD)

    def to_upload_or_remove(self) -> FilesView:
        return self.with_action(Action.UPLOAD, Action.REMOVE)

    def changes(self) -> FilesView:
        return self.filter(lambda r: r.action != Action.NONE)

    def uploadable(self) -> FilesView:
        return self.filter(lambda r: r.is_valid_action(Action.UPLOAD, self))

    def updateable(self) -> FilesView:
        return self.with_status(Status.UPDATEABLE)

    # ------------------------------------------------------------------
    # Change queries
    # ------------------------------------------------------------------

    def has_changes(self) -> bool:
        return any(r.action != Action.NONE for r in self)

    def clear_actions(self):
        for record in self:
            record.set_no_action()

    def clone(self, view: Optional[Iterable[FileRecord]] = None) -> "Collection":
        """
        Independent copy scoped to the records of a view.

        Update sites are copied too, so the clone can run a batch on its own.
        """
        clone = Collection()
        for site in self.sites.values():
            clone.sites[site.name] = UpdateSite(**vars(site))
        for record in (view if view is not None else self):
            clone.add(record.copy())
        return clone

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def get_dependencies(self, for_upload: bool = False) -> DependencyMap:
        """
        Records implicated by the current action set but not selected.

        For installs, a dependency is implicated when it would not be present
        locally after the batch; for uploads, when the site would not publish
        it after the batch.
        """
        result = DependencyMap()
        sources = self.to_upload() if for_upload else self.to_install_or_update()
        visited: set = set()
        for record in sources:
            self._add_dependencies(record, result, for_upload, visited)
        return result

    def _add_dependencies(self, record: FileRecord, result: DependencyMap, for_upload: bool, visited: set):
        if record in visited:
            return
        visited.add(record)
        for dep_name in sorted(record.dependencies):
            dep = self.get(dep_name)
            if dep is None or dep is record:
                continue
            satisfied = dep.will_be_available if for_upload else dep.will_be_installed
            if satisfied:
                continue
            result.add(dep, record)
            self._add_dependencies(dep, result, for_upload, visited)

    def check_consistency(self) -> Optional[str]:
        """
        Validate the state the pending batch would leave behind.

        Returns a human-readable diagnostic, or None when there are no errors.
        """
        errors = []
        for record in sorted(self, key=lambda r: r.name):
            if record.site is not None and record.site not in self.sites:
                errors.append(f"{record.name} belongs to unknown update site '{record.site}'")
            if record.action != Action.NONE and not record.is_valid_action(record.action, self):
                errors.append(
                    f"{record.name}: action {record.action.name} is not valid for status {record.status.name}"
                )
            if record.action == Action.UPLOAD and record.site is not None:
                site = self.sites.get(record.site)
                if site is not None and not site.is_uploadable:
                    errors.append(f"{record.name} belongs to '{record.site}', which is not uploadable")
            for dep_name in sorted(record.dependencies):
                errors.extend(self._dependency_errors(record, dep_name))
        if not errors:
            return None
        return "\n".join(errors)

    def _dependency_errors(self, record: FileRecord, dep_name: str) -> list[str]:
        dep = self.get(dep_name)
        installing = record.action in (Action.INSTALL, Action.UPDATE)
        uploading = record.action == Action.UPLOAD
        if dep is None:
            if installing or uploading:
                return [f"{record.name} requires {dep_name}, which is not known to any update site"]
            return []
        if dep is record:
            return []

        errors = []
        if installing and dep.action == Action.REMOVE:
            errors.append(
                f"{record.name} is being installed, but its dependency {dep.name} "
                f"is being removed from its update site"
            )
        if record.will_be_installed and (installing or dep.action == Action.UNINSTALL):
            if not dep.will_be_installed:
                errors.append(f"{record.name} requires {dep.name}, which will not be installed")
        if record.will_be_available and (uploading or dep.action == Action.REMOVE):
            if not dep.will_be_available:
                errors.append(f"{record.name} requires {dep.name}, which will not be on the update site")
        return errors

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary(self) -> ChangeSummary:
        summary = ChangeSummary()
        for record in self:
            if record.action in (Action.INSTALL, Action.UPDATE):
                summary.install += 1
                summary.bytes_to_download += record.size
            elif record.action == Action.UNINSTALL:
                summary.uninstall += 1
            elif record.action == Action.UPLOAD:
                summary.upload += 1
                summary.bytes_to_upload += record.size
            elif record.action == Action.REMOVE:
                summary.remove += 1
        for record in self.get_dependencies(for_upload=False):
            summary.implicated += 1
            summary.bytes_to_download += record.size
        for record in self.get_dependencies(for_upload=True):
            summary.bytes_to_upload += record.size
        return summary

    # ------------------------------------------------------------------
    # Batch guard
    # ------------------------------------------------------------------

    @contextmanager
    def batch(self):
        """Hold the in-process guard for one batch."""
        if not self._batch_lock.acquire(blocking=False):
            raise BatchInProgress()
        try:
            yield self
        finally:
            self._batch_lock.release()

    @property
    def batch_running(self) -> bool:
        return self._batch_lock.locked()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path) -> "Collection":
        """Load a collection from a local manifest (empty if missing)."""
        from ..manifest import ManifestStore
        return ManifestStore(path).load()

    def write(self):
        """Persist to the manifest this collection was loaded from."""
        if self.store is None:
            raise ValueError("No manifest store set for collection")
        self.store.write(self)
