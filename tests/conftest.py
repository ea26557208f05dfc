"""Pytest configuration and fixtures."""

import hashlib
import tempfile
from pathlib import Path

import pytest

from plugsync.core.constants import SITE_MANIFEST_FILE
from plugsync.manifest import SiteEntry, SiteManifest, atomic_write_json, versioned_name


def md5(content: bytes) -> str:
    return hashlib.md5(content).hexdigest()


class FakeSite:
    """A directory update site that tests can publish files to."""

    def __init__(self, directory: Path, timestamp: int = 20240101000000):
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self.manifest = SiteManifest(timestamp)
        self.save()

    @property
    def url(self) -> str:
        return str(self.directory)

    @property
    def manifest_path(self) -> Path:
        return self.directory / SITE_MANIFEST_FILE

    def publish(self, name: str, content: bytes, timestamp: int = 20240101000000,
                dependencies=(), previous=()) -> SiteEntry:
        obj = self.directory / versioned_name(name, timestamp)
        obj.parent.mkdir(parents=True, exist_ok=True)
        obj.write_bytes(content)
        entry = SiteEntry(
            name=name,
            checksum=md5(content),
            timestamp=timestamp,
            size=len(content),
            dependencies=list(dependencies),
            previous=list(previous),
        )
        self.manifest.add(entry)
        self.save()
        return entry

    def save(self):
        atomic_write_json(self.manifest_path, self.manifest.to_dict())

    def manifest_bytes(self) -> bytes:
        return self.manifest_path.read_bytes()


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def root(temp_dir):
    path = temp_dir / "app"
    path.mkdir()
    return path


@pytest.fixture
def site(temp_dir):
    return FakeSite(temp_dir / "site")
