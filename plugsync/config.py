"""
Configuration management for plugsync.

Config file:
- .plugsync/settings.json: User preferences (tracked directories, network
  tuning, default update sites for a fresh installation)

Update-site connection metadata lives in the local manifest, not here.
Upload passwords are never written to disk.
"""

import json
from pathlib import Path
from typing import Optional

from .core.constants import TRACKED_DIRS
from .files.collection import UpdateSite


class UpdaterSettings:
    """
    Manages .plugsync/settings.json - preferences that persist across runs.

    Stores:
    - Which directories are scanned for untracked files
    - Download retries and timeouts
    - The update site uploads go to when none is named
    - Sites added to a collection that has none yet
    """

    DEFAULT_SITES = [
        UpdateSite(name="main", url="https://update.plugsync.org/"),
    ]

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self.tracked_dirs: list[str] = list(TRACKED_DIRS)
        self.max_retries: int = 3
        self.connect_timeout: int = 10
        self.read_timeout: int = 120
        # Site used by `upload` when no site is given
        self.upload_site: str = ""
        self.default_sites: list[UpdateSite] = [UpdateSite(**vars(s)) for s in self.DEFAULT_SITES]
        # Track if this is a fresh settings file (no file existed)
        self._is_new: bool = False

    @property
    def is_new(self) -> bool:
        return self._is_new

    @property
    def timeout(self) -> tuple[int, int]:
        return (self.connect_timeout, self.read_timeout)

    @classmethod
    def load(cls, path: Path) -> "UpdaterSettings":
        """Load settings from file. A missing or corrupt file yields defaults."""
        settings = cls(path)

        if path.exists():
            try:
                with open(path) as f:
                    data = json.load(f)

                settings.tracked_dirs = list(data.get("tracked_dirs", settings.tracked_dirs))
                settings.max_retries = data.get("max_retries", settings.max_retries)
                settings.connect_timeout = data.get("connect_timeout", settings.connect_timeout)
                settings.read_timeout = data.get("read_timeout", settings.read_timeout)
                settings.upload_site = data.get("upload_site", "")
                if "default_sites" in data:
                    settings.default_sites = [UpdateSite.from_dict(s) for s in data["default_sites"]]
            except (json.JSONDecodeError, IOError) as e:
                print(f"Warning: Could not load {path.name}: {e}")
                settings._is_new = True
        else:
            settings._is_new = True

        return settings

    def to_dict(self) -> dict:
        return {
            "tracked_dirs": self.tracked_dirs,
            "max_retries": self.max_retries,
            "connect_timeout": self.connect_timeout,
            "read_timeout": self.read_timeout,
            "upload_site": self.upload_site,
            "default_sites": [s.to_dict() for s in self.default_sites],
        }

    def save(self):
        """Save settings to file."""
        if self.path is None:
            raise ValueError("No path set for settings")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        self._is_new = False
