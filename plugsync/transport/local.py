"""
Update sites that are plain directories (file:// URLs or paths).

Used for sites on shared drives and in tests. The lock is a file created
with O_EXCL, so two processes cannot both hold it.
"""

import json
import os
import shutil
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

from ..core.constants import SITE_MANIFEST_FILE, SITE_LOCK_FILE
from ..core.errors import TransportFailure
from ..manifest import atomic_write_json
from .base import Transport


def url_to_path(url: str) -> Path:
    """Convert a file:// URL (or a bare path) to a Path."""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path))
    return Path(url)


class LocalTransport(Transport):
    """Transport for a site that lives in a local directory."""

    @property
    def directory(self) -> Path:
        return url_to_path(self.url)

    @property
    def upload_directory(self) -> Path:
        return url_to_path(self.upload_url)

    @property
    def lock_path(self) -> Path:
        return self.upload_directory / SITE_LOCK_FILE

    def fetch_manifest(self) -> Optional[dict]:
        if not self.directory.is_dir():
            return None
        manifest_path = self.directory / SITE_MANIFEST_FILE
        if not manifest_path.exists():
            return {}
        try:
            with open(manifest_path) as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            return None

    def login(self) -> bool:
        directory = self.upload_directory
        return directory.is_dir() and os.access(directory, os.W_OK)

    def upload(self, source: Path, remote_name: str) -> bool:
        dest = self.upload_directory / remote_name
        tmp = dest.with_name(dest.name + ".part")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, tmp)
            os.replace(tmp, dest)
            return True
        except OSError:
            try:
                tmp.unlink()
            except OSError:
                pass
            return False

    def publish_manifest(self, data: dict):
        try:
            atomic_write_json(self.upload_directory / SITE_MANIFEST_FILE, data)
        except OSError as e:
            raise TransportFailure(f"Could not publish manifest to {self.upload_url}: {e}") from e

    def acquire_lock(self) -> bool:
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        except OSError as e:
            raise TransportFailure(f"Could not create lock {self.lock_path}: {e}") from e
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        self._locked = True
        return True

    def release_lock(self):
        if not self._locked:
            return
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
        self._locked = False

    def file_url(self, remote_name: str) -> str:
        return (self.directory.resolve() / remote_name).as_uri()
