"""
File downloader for plugsync.

Fetches one file at a time into the staging area, with retries. HTTP(S)
downloads stream through aiohttp; file:// URLs (directory sites) are copied.
The installer checks for cancellation between calls, never during one.
"""

import asyncio
import os
import shutil
import ssl
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple
from urllib.parse import urlparse

import aiohttp
import certifi

from ..transport.local import url_to_path


def get_certifi_path() -> str:
    """Get path to certifi CA bundle, handling PyInstaller bundles."""
    if getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS'):
        bundled_cert = os.path.join(sys._MEIPASS, 'certifi', 'cacert.pem')
        if os.path.exists(bundled_cert):
            return bundled_cert
    return certifi.where()


@dataclass
class DownloadTask:
    """One file to fetch into staging."""
    name: str
    url: str
    local_path: Path
    size: int = 0
    checksum: str = ""


@dataclass
class DownloadResult:
    """Result of a single file download."""
    success: bool
    file_path: Path
    message: str
    bytes_downloaded: int = 0
    retryable: bool = False


class FileDownloader:
    """
    Downloads single files with retries and byte-level progress.

    Uses asyncio + aiohttp for HTTP(S) transfers.
    """

    def __init__(
        self,
        max_retries: int = 3,
        timeout: Tuple[int, int] = (10, 120),
        chunk_size: int = 32768,
    ):
        self.max_retries = max_retries
        self.timeout = aiohttp.ClientTimeout(connect=timeout[0], sock_read=timeout[1])
        self.chunk_size = chunk_size

    def fetch(self, task: DownloadTask, on_bytes: Optional[Callable[[int], None]] = None) -> DownloadResult:
        """
        Fetch task.url to task.local_path.

        Args:
            task: What to download
            on_bytes: Called with the running byte count for this file

        Returns:
            DownloadResult; failures never raise
        """
        task.local_path.parent.mkdir(parents=True, exist_ok=True)
        scheme = urlparse(task.url).scheme
        if scheme in ("http", "https"):
            return asyncio.run(self._fetch_async(task, on_bytes))
        return self._copy_local(task, on_bytes)

    def _copy_local(self, task: DownloadTask, on_bytes: Optional[Callable[[int], None]]) -> DownloadResult:
        source = url_to_path(task.url)
        copied = 0
        try:
            with open(source, "rb") as src, open(task.local_path, "wb") as dst:
                for chunk in iter(lambda: src.read(self.chunk_size), b""):
                    dst.write(chunk)
                    copied += len(chunk)
                    if on_bytes:
                        on_bytes(copied)
        except OSError as e:
            return DownloadResult(
                success=False,
                file_path=task.local_path,
                message=f"ERR: {task.name} - {e}",
            )
        return DownloadResult(
            success=True,
            file_path=task.local_path,
            message=f"OK: {task.name}",
            bytes_downloaded=copied,
        )

    async def _fetch_async(self, task: DownloadTask, on_bytes: Optional[Callable[[int], None]]) -> DownloadResult:
        ssl_context = ssl.create_default_context(cafile=get_certifi_path())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(timeout=self.timeout, connector=connector) as session:
            for attempt in range(self.max_retries):
                try:
                    async with session.get(task.url, allow_redirects=True) as response:
                        response.raise_for_status()
                        return await self._write_response(response, task, on_bytes)

                except asyncio.TimeoutError:
                    if attempt < self.max_retries - 1:
                        await asyncio.sleep(0.5 * (attempt + 1))
                        continue
                    return DownloadResult(
                        success=False,
                        file_path=task.local_path,
                        message=f"ERR (timeout): {task.name}",
                        retryable=True,
                    )

                except aiohttp.ClientResponseError as e:
                    retryable = e.status in (403, 429) or 500 <= e.status < 600
                    if retryable and attempt < self.max_retries - 1:
                        await asyncio.sleep(0.5 * (attempt + 1))
                        continue
                    return DownloadResult(
                        success=False,
                        file_path=task.local_path,
                        message=f"ERR (HTTP {e.status}): {task.name}",
                        retryable=retryable,
                    )

                except aiohttp.ClientError as e:
                    if attempt < self.max_retries - 1:
                        await asyncio.sleep(0.5 * (attempt + 1))
                        continue
                    return DownloadResult(
                        success=False,
                        file_path=task.local_path,
                        message=f"ERR: {task.name} - {e}",
                        retryable=True,
                    )

        return DownloadResult(
            success=False,
            file_path=task.local_path,
            message=f"ERR: {task.name} - failed after {self.max_retries} attempts",
        )

    async def _write_response(
        self,
        response: aiohttp.ClientResponse,
        task: DownloadTask,
        on_bytes: Optional[Callable[[int], None]],
    ) -> DownloadResult:
        """Write response content to the staging file."""
        downloaded_bytes = 0
        with open(task.local_path, "wb") as f:
            async for chunk in response.content.iter_chunked(self.chunk_size):
                if chunk:
                    f.write(chunk)
                    downloaded_bytes += len(chunk)
                    if on_bytes:
                        on_bytes(downloaded_bytes)

        return DownloadResult(
            success=True,
            file_path=task.local_path,
            message=f"OK: {task.name}",
            bytes_downloaded=downloaded_bytes,
        )


def cleanup_staging(staging_dir: Path) -> int:
    """Remove leftover partial downloads. Returns how many were removed."""
    cleaned = 0
    if not staging_dir.exists():
        return cleaned
    for f in staging_dir.rglob("*"):
        if f.is_file():
            try:
                f.unlink()
                cleaned += 1
            except OSError:
                pass
    shutil.rmtree(staging_dir, ignore_errors=True)
    return cleaned
