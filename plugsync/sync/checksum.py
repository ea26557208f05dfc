"""
Checksumming and status derivation for plugsync.

Computes local MD5 checksums and timestamps, reads site manifests for the
remote side, and derives each record's Status from the comparison. Never
touches a record's Action.
"""

import hashlib
import os
from pathlib import Path
from typing import Iterable, Optional

from ..core.constants import TRACKED_DIRS, IGNORED_SUFFIXES, STATE_DIR
from ..core.formatting import timestamp_from_epoch
from ..core.progress import ProgressTracker
from ..files.collection import Collection, UpdateSite
from ..files.record import FileRecord, Status
from ..manifest import SiteManifest
from ..transport import get_transport

CHUNK_SIZE = 65536


def compute_checksum(path: Path) -> str:
    """MD5 of a file's content."""
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def derive_status(record: FileRecord) -> Status:
    """
    Status from local vs recorded checksum, local vs remote checksum,
    local vs remote timestamp, and presence on each side.
    """
    local = record.local_checksum
    present = local is not None

    if record.site is None:
        if not present:
            return Status.OBSOLETE_UNINSTALLED
        return Status.LOCAL_ONLY if record.checksum else Status.NEW

    remote = record.remote_version
    if remote is None:
        return Status.OBSOLETE if present else Status.OBSOLETE_UNINSTALLED
    if not present:
        return Status.NOT_INSTALLED
    if local == remote.checksum:
        return Status.INSTALLED
    if local == record.checksum or record.matches_previous(local):
        return Status.UPDATEABLE
    if record.checksum:
        # Diverges from what we installed: somebody edited it
        return Status.MODIFIED
    if record.local_timestamp > remote.timestamp:
        return Status.MODIFIED
    return Status.UPDATEABLE


class Checksummer:
    """
    Refreshes checksums and statuses for a collection.

    Hashes are cached per (path, mtime, size) for the lifetime of the
    instance, so an incremental refresh only rehashes files that changed.
    """

    def __init__(
        self,
        collection: Collection,
        root: Path,
        progress: Optional[ProgressTracker] = None,
        tracked_dirs: Iterable[str] = TRACKED_DIRS,
        transports: Optional[dict] = None,
    ):
        self.collection = collection
        self.root = Path(root)
        self.progress = progress
        self.tracked_dirs = tuple(tracked_dirs)
        # site name -> Transport; missing sites get one from the registry
        self.transports = transports or {}
        self._cache: dict[str, tuple[int, int, str]] = {}

    # ------------------------------------------------------------------
    # Local side
    # ------------------------------------------------------------------

    def _local_state(self, name: str) -> tuple[Optional[str], int]:
        """(checksum, timestamp) of a file on disk, or (None, 0) if unreadable."""
        path = self.root / name
        try:
            stat = path.stat()
            if not path.is_file():
                return None, 0
            key = str(path)
            cached = self._cache.get(key)
            if cached and cached[0] == stat.st_mtime_ns and cached[1] == stat.st_size:
                checksum = cached[2]
            else:
                checksum = compute_checksum(path)
                self._cache[key] = (stat.st_mtime_ns, stat.st_size, checksum)
            return checksum, timestamp_from_epoch(stat.st_mtime)
        except OSError:
            return None, 0

    def discover(self) -> list[FileRecord]:
        """Add NEW records for files under the tracked directories no manifest knows."""
        found = []
        for rel_path in self._scan_tracked():
            if rel_path in self.collection:
                continue
            path = self.root / rel_path
            record = FileRecord(
                name=rel_path,
                site=None,
                size=_size_or_zero(path),
                executable=os.access(path, os.X_OK),
                status=Status.NEW,
            )
            self.collection.add(record)
            found.append(record)
        return found

    def _scan_tracked(self) -> list[str]:
        rel_paths = []

        def scan_dir(dir_path: Path, prefix: str):
            try:
                with os.scandir(dir_path) as entries:
                    for entry in entries:
                        rel_path = f"{prefix}{entry.name}"
                        if entry.is_file(follow_symlinks=False):
                            if Path(entry.name).suffix.lower() not in IGNORED_SUFFIXES:
                                rel_paths.append(rel_path)
                        elif entry.is_dir(follow_symlinks=False) and entry.name != STATE_DIR:
                            scan_dir(Path(entry.path), f"{rel_path}/")
            except OSError:
                pass

        for tracked in self.tracked_dirs:
            scan_dir(self.root / tracked, f"{tracked}/")
        return sorted(rel_paths)

    def update_from_local(self, names: Optional[Iterable[str]] = None) -> list[FileRecord]:
        """
        Recompute local checksums and statuses.

        Args:
            names: Records to refresh. None refreshes everything and also
                   discovers unknown files under the tracked directories.

        Returns:
            The refreshed records
        """
        if names is None:
            self.discover()
            records = list(self.collection)
        else:
            records = [r for r in (self.collection.get(n) for n in names) if r is not None]

        total = len(records)
        if self.progress:
            self.progress.set_title("Checksumming")

        for i, record in enumerate(records):
            checksum, timestamp = self._local_state(record.name)
            record.local_checksum = checksum
            record.local_timestamp = timestamp
            if checksum is not None and record.site is None:
                record.size = _size_or_zero(self.root / record.name)
            self._apply_status(record)
            if self.progress:
                self.progress.update(i + 1, total, record.name)

        if self.progress:
            self.progress.done()
        return records

    # ------------------------------------------------------------------
    # Remote side
    # ------------------------------------------------------------------

    def _transport_for(self, site: UpdateSite):
        transport = self.transports.get(site.name)
        if transport is None:
            transport = get_transport(site)
            self.transports[site.name] = transport
        return transport

    def update_from_remote(self, sites: Optional[Iterable[str]] = None) -> list[str]:
        """
        Read site manifests and refresh every record's remote side.

        Returns:
            Names of the sites that could not be reached (left untouched)
        """
        unreachable = []
        names = list(sites) if sites is not None else self.collection.update_site_names()
        for name in names:
            site = self.collection.get_update_site(name)
            if site is None:
                continue
            data = self._transport_for(site).fetch_manifest()
            if data is None:
                unreachable.append(name)
                if self.progress:
                    self.progress.write(f"  Could not reach update site '{name}' ({site.url})")
                continue
            manifest = SiteManifest.from_dict(data)
            site.timestamp = manifest.timestamp
            self.apply_site_manifest(name, manifest)
        return unreachable

    def apply_site_manifest(self, site_name: str, manifest: SiteManifest):
        """Merge what one site publishes into the collection."""
        order = self.collection.update_site_names()
        rank = {name: i for i, name in enumerate(order)}

        for record in self.collection:
            if site_name in record.remote and manifest.get(record.name) is None:
                del record.remote[site_name]
                if record.site == site_name and record.remote:
                    # Another site still publishes it; the latest-ranked one wins
                    record.site = max(record.remote, key=lambda s: rank.get(s, -1))

        for entry in manifest.files.values():
            record = self.collection.get(entry.name)
            if record is None:
                record = self.collection.add(FileRecord(name=entry.name, site=site_name))
            record.remote[site_name] = entry.remote_version()

            owner = record.site
            if owner is None or owner not in record.remote or rank.get(site_name, -1) >= rank.get(owner, -1):
                record.site = site_name
            if record.site != site_name:
                continue
            record.size = entry.size
            record.executable = entry.executable
            record.dependencies = set(entry.dependencies)
            for checksum in entry.previous:
                if checksum not in record.previous:
                    record.previous.append(checksum)

    # ------------------------------------------------------------------
    # Both
    # ------------------------------------------------------------------

    def update(self, names: Optional[Iterable[str]] = None) -> list[str]:
        """Refresh remote then local state. Returns unreachable site names."""
        unreachable = self.update_from_remote()
        self.update_from_local(names)
        return unreachable

    def _apply_status(self, record: FileRecord):
        status = derive_status(record)
        if status == Status.INSTALLED and record.checksum != record.local_checksum:
            record.checksum = record.local_checksum
            record.timestamp = record.remote_timestamp
        record.set_status(status)


def find_read_only(collection: Collection, root: Path) -> list[str]:
    """Names of tracked files that exist but cannot be overwritten."""
    names = []
    for record in collection:
        path = Path(root) / record.name
        if path.exists() and not os.access(path, os.W_OK):
            names.append(record.name)
    return sorted(names)


def _size_or_zero(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0
