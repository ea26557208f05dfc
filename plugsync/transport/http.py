"""
HTTP(S) update sites.

Reads go through plain GETs against the site URL. Uploads use WebDAV-style
PUT requests against the upload URL, authenticated with basic auth. The
site lock is a lock object created with a conditional PUT
(If-None-Match: *), so the server refuses a second holder with 412.
"""

import time
from pathlib import Path
from typing import Optional

import requests

from ..core.constants import SITE_MANIFEST_FILE, SITE_LOCK_FILE
from ..core.errors import TransportFailure
from .base import Transport


class HttpTransport(Transport):
    """Transport for sites served over HTTP(S)."""

    def __init__(
        self,
        url: str,
        upload_url: str = "",
        username: str = "",
        password: Optional[str] = None,
        timeout: int = 60,
        max_retries: int = 3,
    ):
        super().__init__(url, upload_url, username, password)
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self._api_calls = 0

    @property
    def api_calls(self) -> int:
        """Total requests made by this transport."""
        return self._api_calls

    def _join(self, base: str, name: str) -> str:
        return f"{base.rstrip('/')}/{name}"

    def _request_with_retry(self, method: str, url: str, **kwargs) -> requests.Response:
        """Make a request, retrying timeouts and server errors with backoff."""
        timeout = kwargs.pop("timeout", self.timeout)

        for attempt in range(self.max_retries):
            try:
                response = self.session.request(method, url, timeout=timeout, **kwargs)
                self._api_calls += 1
                if response.status_code >= 500 and attempt < self.max_retries - 1:
                    time.sleep(2 ** attempt)
                    continue
                return response
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError):
                if attempt < self.max_retries - 1:
                    time.sleep(2 ** attempt)
                    continue
                raise

        raise RuntimeError(f"Request failed after {self.max_retries} attempts")

    def fetch_manifest(self) -> Optional[dict]:
        try:
            response = self._request_with_retry("GET", self._join(self.url, SITE_MANIFEST_FILE))
        except requests.RequestException:
            return None
        if response.status_code == 404:
            return {}
        if not response.ok:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def login(self) -> bool:
        if self.username:
            self.session.auth = (self.username, self.password or "")
        try:
            response = self._request_with_retry(
                "PROPFIND", self.upload_url.rstrip("/") + "/", headers={"Depth": "0"}
            )
        except requests.RequestException:
            return False
        return response.status_code in (200, 207)

    def upload(self, source: Path, remote_name: str) -> bool:
        url = self._join(self.upload_url, remote_name)
        try:
            with open(source, "rb") as f:
                response = self._request_with_retry("PUT", url, data=f)
        except (OSError, requests.RequestException):
            return False
        return response.status_code in (200, 201, 204)

    def publish_manifest(self, data: dict):
        url = self._join(self.upload_url, SITE_MANIFEST_FILE)
        try:
            response = self._request_with_retry("PUT", url, json=data)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransportFailure(f"Could not publish manifest to {url}: {e}") from e

    def acquire_lock(self) -> bool:
        url = self._join(self.upload_url, SITE_LOCK_FILE)
        try:
            response = self._request_with_retry(
                "PUT", url, data=b"locked", headers={"If-None-Match": "*"}
            )
        except requests.RequestException as e:
            raise TransportFailure(f"Could not reach {url}: {e}") from e
        if response.status_code == 412:
            return False
        if response.status_code not in (200, 201, 204):
            raise TransportFailure(f"Could not lock {url}: HTTP {response.status_code}")
        self._locked = True
        return True

    def release_lock(self):
        if not self._locked:
            return
        url = self._join(self.upload_url, SITE_LOCK_FILE)
        try:
            self._request_with_retry("DELETE", url)
        except requests.RequestException as e:
            raise TransportFailure(f"Could not release lock {url}: {e}") from e
        finally:
            self._locked = False

    def file_url(self, remote_name: str) -> str:
        return self._join(self.url, remote_name)

    def close(self):
        self.session.close()
