"""
Manifest persistence for plugsync.

Two JSON formats live here:
- the local manifest (.plugsync/manifest.json) round-trips the whole
  Collection: every record field plus update-site metadata;
- the site manifest (manifest.json at the root of an update site) lists
  what the site publishes.

Writes go to a temporary file next to the target and are moved into place
with os.replace, so a failed write leaves the previous file intact.
"""

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..core.errors import ManifestWriteFailure
from ..files.collection import Collection, UpdateSite
from ..files.record import FileRecord, RemoteVersion


def atomic_write_json(path: Path, data: dict):
    """
    Write JSON to path atomically.

    Raises OSError (or TypeError/ValueError for unserializable data); the
    previous file content survives any failure.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class ManifestStore:
    """
    Reads and writes the local manifest.

    The manifest contains:
    - version: Manifest format version
    - generated: ISO timestamp of last write
    - sites: Update-site connection metadata
    - files: Every FileRecord with all its fields
    """

    VERSION = "1.0.0"

    def __init__(self, path: Path):
        """
        Args:
            path: Path to manifest.json
        """
        self.path = Path(path)

    def load(self) -> Collection:
        """
        Load the collection. A missing file yields an empty collection.

        A corrupt file raises ValueError rather than silently discarding
        what the user had installed.
        """
        collection = Collection(store=self)
        if not self.path.exists():
            return collection

        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Corrupt manifest {self.path}: {e}") from e

        return self.from_dict(data, collection)

    def write(self, collection: Collection):
        """Write the collection. Raises ManifestWriteFailure on any error."""
        try:
            atomic_write_json(self.path, self.to_dict(collection))
        except (OSError, TypeError, ValueError) as e:
            raise ManifestWriteFailure(self.path, e) from e

    def to_dict(self, collection: Collection) -> dict:
        return {
            "version": self.VERSION,
            "generated": datetime.now(timezone.utc).isoformat(),
            "sites": [site.to_dict() for site in collection.sites.values()],
            "files": [record.to_dict() for record in sorted(collection, key=lambda r: r.name)],
        }

    @staticmethod
    def from_dict(data: dict, collection: Optional[Collection] = None) -> Collection:
        if collection is None:
            collection = Collection()
        for site_data in data.get("sites", []):
            site = UpdateSite.from_dict(site_data)
            collection.sites[site.name] = site
        for file_data in data.get("files", []):
            record = FileRecord.from_dict(file_data)
            if record.site is not None and record.site not in collection.sites:
                # Site was dropped by hand; keep the file as local-only
                record.site = None
            collection.add(record)
        return collection


@dataclass
class SiteEntry:
    """A single file published by an update site."""
    name: str
    checksum: str
    timestamp: int = 0
    size: int = 0
    executable: bool = False
    dependencies: list = field(default_factory=list)
    previous: list = field(default_factory=list)

    @property
    def remote_name(self) -> str:
        """Object name of this version on the site."""
        return versioned_name(self.name, self.timestamp)

    def to_dict(self) -> dict:
        d = {
            "name": self.name,
            "checksum": self.checksum,
            "timestamp": self.timestamp,
            "size": self.size,
        }
        if self.executable:
            d["executable"] = True
        if self.dependencies:
            d["dependencies"] = sorted(self.dependencies)
        if self.previous:
            d["previous"] = list(self.previous)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "SiteEntry":
        return cls(
            name=data.get("name", ""),
            checksum=data.get("checksum", ""),
            timestamp=data.get("timestamp", 0),
            size=data.get("size", 0),
            executable=data.get("executable", False),
            dependencies=list(data.get("dependencies", [])),
            previous=list(data.get("previous", [])),
        )

    @classmethod
    def from_record(cls, record: FileRecord, timestamp: int) -> "SiteEntry":
        return cls(
            name=record.name,
            checksum=record.local_checksum or record.checksum,
            timestamp=timestamp,
            size=record.size,
            executable=record.executable,
            dependencies=sorted(record.dependencies),
            previous=list(record.previous),
        )

    def remote_version(self) -> RemoteVersion:
        return RemoteVersion(self.checksum, self.timestamp, self.size)


class SiteManifest:
    """What one update site publishes."""

    VERSION = "1.0.0"

    def __init__(self, timestamp: int = 0):
        self.version = self.VERSION
        self.timestamp = timestamp
        self.files: dict[str, SiteEntry] = {}

    def add(self, entry: SiteEntry):
        self.files[entry.name] = entry

    def remove(self, name: str) -> Optional[SiteEntry]:
        return self.files.pop(name, None)

    def get(self, name: str) -> Optional[SiteEntry]:
        return self.files.get(name)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "files": [self.files[name].to_dict() for name in sorted(self.files)],
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SiteManifest":
        manifest = cls()
        if not data:
            return manifest
        manifest.version = data.get("version", cls.VERSION)
        manifest.timestamp = data.get("timestamp", 0)
        for entry_data in data.get("files", []):
            manifest.add(SiteEntry.from_dict(entry_data))
        return manifest


def versioned_name(name: str, timestamp: int) -> str:
    """Remote object name for one version of a file."""
    return f"{name}-{timestamp}"
