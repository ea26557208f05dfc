"""
Installer: applies pending local actions (install, update, uninstall).

Every download is staged and verified before the live copy is touched.
Files the OS refuses to delete or replace right now are deferred to the
next start instead of failing the batch.
"""

import os
import stat
from pathlib import Path
from typing import Optional

from ..core.errors import (
    Canceled,
    ChecksumMismatch,
    DependencyConflict,
    ManifestWriteFailure,
    TransportFailure,
)
from ..core.paths import get_staging_dir, get_update_dir
from ..core.progress import ProgressTracker, SilentProgress
from ..files.collection import Collection
from ..files.record import FileRecord
from ..manifest import versioned_name
from ..transport import get_transport
from .checksum import compute_checksum
from .downloader import DownloadTask, FileDownloader, cleanup_staging
from .purger import PendingWork, remove_empty_dirs, remove_file, replace_file
from .results import BatchResult


class Installer:
    """
    Runs one install/uninstall batch against a collection.

    Usage:
        installer = Installer(collection, root, progress)
        result = installer.start()
    """

    def __init__(
        self,
        collection: Collection,
        root: Path,
        progress: Optional[ProgressTracker] = None,
        downloader: Optional[FileDownloader] = None,
        transports: Optional[dict] = None,
    ):
        self.collection = collection
        self.root = Path(root)
        self.progress = progress or SilentProgress()
        self.downloader = downloader or FileDownloader()
        self.transports = transports or {}
        self.result = BatchResult()
        self._sizes: dict[str, int] = {}
        self._bytes_total = 0
        self._bytes_done = 0

    def start(self, persist: bool = True) -> BatchResult:
        """
        Execute every pending INSTALL, UPDATE and UNINSTALL.

        Raises:
            BatchInProgress: another batch holds this collection
            DependencyConflict: the action set is inconsistent
            Canceled: progress.cancel() was called; carries the partial result
            TransportFailure: a download failed; remaining files are left as they were
            ManifestWriteFailure: files were applied but the manifest was not saved
        """
        with self.collection.batch():
            errors = self.collection.check_consistency()
            if errors:
                raise DependencyConflict(errors.splitlines())

            uninstalls = sorted(self.collection.to_uninstall(), key=lambda r: r.name)
            installs = sorted(self.collection.to_install_or_update(), key=lambda r: r.name)
            self.result = BatchResult()
            # Sizes are fixed here; mark_installed may replace record.size mid-batch
            self._sizes = {r.name: r.size for r in uninstalls + installs}
            self._bytes_total = sum(self._sizes.values())
            self._bytes_done = 0

            pending = PendingWork.load(self.root)
            staging = get_staging_dir(self.root)
            self.progress.set_title("Installing")
            self._tick("")

            try:
                for record in uninstalls:
                    self._check_cancel()
                    self._uninstall(record, pending)
                    self._advance(record)

                for record in installs:
                    self._check_cancel()
                    self._install(record, staging, pending)
                    self._advance(record)
            except (Canceled, TransportFailure) as e:
                cleanup_staging(staging)
                pending.save()
                if isinstance(e, Canceled):
                    self.progress.canceled()
                else:
                    self.progress.close()
                if persist:
                    self._persist()
                raise

            cleanup_staging(staging)
            pending.save()
            self.progress.done()

            if persist:
                self._persist()
            return self.result

    # ------------------------------------------------------------------
    # Per-file operations
    # ------------------------------------------------------------------

    def _uninstall(self, record: FileRecord, pending: PendingWork):
        path = self.root / record.name
        if not remove_file(path):
            pending.add_removal(record.name)
            record.set_no_action()
            self.result.deferred.append(record.name)
            self.progress.write(f"  {record.name} is in use; it will be removed on next start")
            return

        remove_empty_dirs(path, self.root)
        if record.site is None or not record.remote:
            # Nothing publishes it any more; forget it entirely
            self.collection.remove(record)
        else:
            record.mark_uninstalled()
        self.result.completed.append(record.name)

    def _install(self, record: FileRecord, staging: Path, pending: PendingWork):
        version = record.remote_version
        site = self.collection.get_update_site(record.site) if record.site else None
        if version is None or site is None:
            self.result.add_error(record.name, TransportFailure(f"{record.name} is not published by any update site"))
            return

        staged = staging / record.name
        url = self._transport_for(site).file_url(versioned_name(record.name, version.timestamp))
        task = DownloadTask(
            name=record.name,
            url=url,
            local_path=staged,
            size=version.size,
            checksum=version.checksum,
        )
        base = self._bytes_done
        size = self._sizes.get(record.name, record.size)
        download = self.downloader.fetch(task, on_bytes=lambda n: self._tick(record.name, base + min(n, size)))
        if not download.success:
            remove_file(staged)
            error = TransportFailure(f"Download of {record.name} failed: {download.message}", result=self.result)
            self.result.add_error(record.name, error)
            raise error

        mismatch = self._verify(task)
        if mismatch is not None:
            self.result.add_error(record.name, mismatch)
            remove_file(staged)
            return

        if record.executable:
            mode = os.stat(staged).st_mode
            os.chmod(staged, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

        dest = self.root / record.name
        if not replace_file(staged, dest):
            deferred = get_update_dir(self.root) / record.name
            if not replace_file(staged, deferred):
                self.result.add_error(record.name, TransportFailure(f"Could not stage {record.name} for next start"))
                return
            pending.add_install(record.name)
            record.set_no_action()
            self.result.deferred.append(record.name)
            self.progress.write(f"  {record.name} is in use; the update will be applied on next start")
            return

        record.mark_installed()
        self.result.completed.append(record.name)
        self.result.bytes_done += download.bytes_downloaded

    def _verify(self, task: DownloadTask) -> Optional[ChecksumMismatch]:
        """Compare a staged file with the published size and checksum."""
        actual_size = task.local_path.stat().st_size
        if task.size and actual_size != task.size:
            return ChecksumMismatch(task.name, f"{task.size} bytes", f"{actual_size} bytes")
        actual = compute_checksum(task.local_path)
        if task.checksum and actual != task.checksum:
            return ChecksumMismatch(task.name, task.checksum, actual)
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transport_for(self, site):
        transport = self.transports.get(site.name)
        if transport is None:
            transport = get_transport(site)
            self.transports[site.name] = transport
        return transport

    def _check_cancel(self):
        if self.progress.cancelled:
            raise Canceled(result=self.result)

    def _tick(self, label: str, done: Optional[int] = None):
        self.progress.update(self._bytes_done if done is None else done, self._bytes_total, label)

    def _advance(self, record: FileRecord):
        self._bytes_done += self._sizes.get(record.name, record.size)
        self._tick(record.name)

    def _persist(self):
        if self.collection.store is None:
            return
        try:
            self.collection.write()
        except ManifestWriteFailure as e:
            e.result = self.result
            raise
