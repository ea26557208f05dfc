"""
Uploader: publishes pending UPLOAD and REMOVE actions to one update site.

The site manifest is replaced only after every transfer succeeded, and
uploaded objects carry a version suffix, so a failed or canceled upload
leaves the published state exactly as it was.
"""

from pathlib import Path
from typing import Optional

from ..core.errors import (
    Canceled,
    DependencyConflict,
    ManifestWriteFailure,
    SiteLocked,
    SiteOutOfDate,
    TransportFailure,
)
from ..core.formatting import now_timestamp
from ..core.progress import ProgressTracker, SilentProgress
from ..files.collection import Collection
from ..files.record import Action, FileRecord
from ..manifest import SiteEntry, SiteManifest, versioned_name
from ..transport import Transport, get_transport
from .results import BatchResult


def upload_order(records: list) -> list:
    """
    Order records so requirements come before their requirers.

    Depth-first over the dependency edges inside the batch. A cycle is
    broken at the point it is detected, so every record appears once.
    """
    by_name = {r.name: r for r in records}
    ordered = []
    visiting: set = set()
    done: set = set()

    def visit(record: FileRecord):
        if record.name in done or record.name in visiting:
            return
        visiting.add(record.name)
        for dep_name in sorted(record.dependencies):
            dep = by_name.get(dep_name)
            if dep is not None:
                visit(dep)
        visiting.discard(record.name)
        done.add(record.name)
        ordered.append(record)

    for record in sorted(records, key=lambda r: r.name):
        visit(record)
    return ordered


class Uploader:
    """
    Runs one upload batch against a single update site.

    Usage:
        uploader = Uploader(collection, "main", root, progress=progress)
        result = uploader.upload()
    """

    def __init__(
        self,
        collection: Collection,
        site_name: str,
        root: Path,
        transport: Optional[Transport] = None,
        progress: Optional[ProgressTracker] = None,
        password: Optional[str] = None,
    ):
        self.collection = collection
        self.site = collection.get_update_site(site_name)
        if self.site is None:
            raise ValueError(f"Unknown update site '{site_name}'")
        self.root = Path(root)
        self.transport = transport or get_transport(self.site, password)
        self.progress = progress or SilentProgress()
        self.result = BatchResult()
        self._sizes: dict[str, int] = {}
        self._logged_in = False

    def login(self) -> bool:
        """Authenticate with the site. Safe to call more than once."""
        if not self._logged_in:
            self._logged_in = self.transport.login()
        return self._logged_in

    def _records(self) -> tuple[list, list]:
        """UPLOAD and REMOVE records that target this site."""
        uploads, removes = [], []
        for record in self.collection.to_upload_or_remove():
            if record.site not in (None, self.site.name):
                continue
            if record.action == Action.UPLOAD:
                uploads.append(record)
            elif record.site == self.site.name:
                removes.append(record)
        return uploads, removes

    def upload(self, persist: bool = True) -> BatchResult:
        """
        Transfer pending uploads and publish the new site manifest.

        Raises:
            BatchInProgress: another batch holds this collection
            TransportFailure: login refused, or a transfer or publish failed
            SiteLocked: another uploader holds the site lock
            SiteOutOfDate: the site changed since the collection last read it
            DependencyConflict: the action set is inconsistent
            Canceled: progress.cancel() was called; nothing was published
        """
        with self.collection.batch():
            self.result = BatchResult()
            if not self.site.is_uploadable:
                raise TransportFailure(f"Update site '{self.site.name}' has no upload URL")
            errors = self.collection.check_consistency()
            if errors:
                raise DependencyConflict(errors.splitlines())
            if not self.login():
                raise TransportFailure(f"Login to update site '{self.site.name}' failed")

            if not self.transport.acquire_lock():
                raise SiteLocked(self.site.name)
            try:
                manifest, timestamp = self._transfer()
            except Canceled:
                self.progress.canceled()
                raise
            finally:
                self._release_lock()

            self._apply(manifest, timestamp)
            self.progress.done()

            if persist and self.collection.store is not None:
                try:
                    self.collection.write()
                except ManifestWriteFailure as e:
                    e.result = self.result
                    raise
            return self.result

    def _transfer(self) -> tuple[SiteManifest, int]:
        """Everything that happens under the site lock. Touches no record."""
        data = self.transport.fetch_manifest()
        if data is None:
            raise TransportFailure(f"Could not read the manifest of '{self.site.name}'", result=self.result)
        remote = SiteManifest.from_dict(data)
        if remote.timestamp != self.site.timestamp:
            raise SiteOutOfDate(self.site.name, self.site.timestamp, remote.timestamp)

        uploads, removes = self._records()
        ordered = upload_order(uploads)
        timestamp = max(now_timestamp(), remote.timestamp + 1)
        self._sizes = self._local_sizes(ordered)
        total = sum(self._sizes.values())
        done = 0

        self.progress.set_title(f"Uploading to {self.site.name}")
        self.progress.update(0, total, "")
        for record in ordered:
            if self.progress.cancelled:
                raise Canceled(result=self.result)
            source = self.root / record.name
            remote_name = versioned_name(record.name, timestamp)
            if not self.transport.upload(source, remote_name):
                raise TransportFailure(f"Upload of {record.name} failed", result=self.result)
            self.result.transferred.append(record.name)
            done += self._sizes[record.name]
            self.progress.update(done, total, record.name)

        if self.progress.cancelled:
            raise Canceled(result=self.result)

        for record in ordered:
            entry = SiteEntry.from_record(record, timestamp)
            entry.size = self._sizes[record.name]
            old = remote.get(record.name)
            if old is not None and old.checksum != entry.checksum and old.checksum not in entry.previous:
                entry.previous.append(old.checksum)
            remote.add(entry)
        for record in removes:
            remote.remove(record.name)
        remote.timestamp = timestamp
        self.transport.publish_manifest(remote.to_dict())
        return remote, timestamp

    def _apply(self, manifest: SiteManifest, timestamp: int):
        """Record the published state. Runs only after the manifest went out."""
        uploads, removes = self._records()
        for record in uploads:
            record.size = self._sizes.get(record.name, record.size)
            record.mark_uploaded(self.site.name, timestamp)
            self.result.completed.append(record.name)
        for record in removes:
            record.mark_removed(self.site.name)
            self.result.completed.append(record.name)
        self.site.timestamp = manifest.timestamp

    def _local_sizes(self, records: list) -> dict[str, int]:
        """Size on disk of each file about to be uploaded."""
        sizes = {}
        for record in records:
            try:
                sizes[record.name] = (self.root / record.name).stat().st_size
            except OSError as e:
                raise TransportFailure(f"Cannot read {record.name}: {e}", result=self.result) from e
        return sizes

    def _release_lock(self):
        """Release the site lock; a failure is reported, never raised."""
        try:
            self.transport.release_lock()
        except TransportFailure as e:
            self.progress.write(f"  Warning: {e}; remove the lock on '{self.site.name}' by hand")

    def initialize_site(self) -> bool:
        """
        Publish an empty manifest to a site that has none yet.

        Returns False when the site already has a manifest.
        """
        if not self.login():
            raise TransportFailure(f"Login to update site '{self.site.name}' failed")
        if not self.transport.acquire_lock():
            raise SiteLocked(self.site.name)
        try:
            data = self.transport.fetch_manifest()
            if data:
                return False
            manifest = SiteManifest(timestamp=now_timestamp())
            self.transport.publish_manifest(manifest.to_dict())
            self.site.timestamp = manifest.timestamp
            return True
        finally:
            self._release_lock()
