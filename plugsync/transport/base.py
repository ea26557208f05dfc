"""
Transport interface for talking to update sites.

A transport hides the protocol behind a narrow surface: read the site
manifest, log in, upload one object, publish a manifest, and hold the
site-wide lock.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional


class Transport(ABC):
    """One update site's connection."""

    def __init__(self, url: str, upload_url: str = "", username: str = "", password: Optional[str] = None):
        self.url = url
        self.upload_url = upload_url or url
        self.username = username
        self.password = password
        self._locked = False

    @property
    def holds_lock(self) -> bool:
        return self._locked

    @abstractmethod
    def fetch_manifest(self) -> Optional[dict]:
        """
        Read the site manifest.

        Returns the parsed manifest, an empty dict for a site that has none
        yet, or None when the site cannot be reached.
        """

    @abstractmethod
    def login(self) -> bool:
        """Authenticate for uploads. Returns False on refusal."""

    @abstractmethod
    def upload(self, source: Path, remote_name: str) -> bool:
        """Transfer one local file to the site under remote_name."""

    @abstractmethod
    def publish_manifest(self, data: dict):
        """Replace the site manifest. Raises TransportFailure on error."""

    @abstractmethod
    def acquire_lock(self) -> bool:
        """Take the site-wide upload lock. Returns False if someone holds it."""

    @abstractmethod
    def release_lock(self):
        """Release the lock if this transport holds it."""

    @abstractmethod
    def file_url(self, remote_name: str) -> str:
        """URL the installer downloads remote_name from."""

    def close(self):
        """Release any connection resources."""
