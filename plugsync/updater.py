"""
The plugsync consumer API.

Updater ties one collection root together: local manifest, settings,
checksummer and the batch executors. Front ends (the CLI, a GUI) talk to
this class and never reach into the collection's internals.
"""

from pathlib import Path
from typing import Callable, Iterable, Optional

from .config import UpdaterSettings
from .core.constants import UPDATER_FILE
from .core.formatting import sort_by_name
from .core.paths import get_manifest_path, get_root, get_settings_path
from .core.progress import ProgressTracker
from .files.collection import ChangeSummary, Collection, DependencyMap, UpdateSite
from .files.record import Action, FileRecord, Status
from .manifest import ManifestStore
from .sync.checksum import Checksummer, find_read_only
from .sync.downloader import FileDownloader
from .sync.installer import Installer
from .sync.purger import apply_pending
from .sync.resolver import DependencyResolver
from .sync.results import BatchResult
from .sync.uploader import Uploader
from .sync.worker import BatchWorker


class Updater:
    """
    Everything a front end needs to inspect and change one installation.

    Usage:
        updater = Updater(root)
        updater.refresh()
        updater.set_action("plugins/Foo.jar", Action.INSTALL)
        result = updater.apply_changes(progress)
        updater.save()
    """

    def __init__(self, root: Optional[Path] = None, settings: Optional[UpdaterSettings] = None):
        self.root = get_root(root)
        self.settings = settings or UpdaterSettings.load(get_settings_path(self.root))
        self.store = ManifestStore(get_manifest_path(self.root))
        self.collection = self.store.load()
        if not self.collection.sites:
            for site in self.settings.default_sites:
                self.collection.add_update_site(site.name, site.url, site.upload_url, site.username)
        self.transports: dict = {}
        self._checksummer: Optional[Checksummer] = None
        self._worker: Optional[BatchWorker] = None

    # ------------------------------------------------------------------
    # Startup and persistence
    # ------------------------------------------------------------------

    def apply_pending(self) -> tuple[int, int]:
        """Finish removals and updates deferred by an earlier run."""
        return apply_pending(self.root)

    def save(self):
        """Write the local manifest and settings."""
        self.collection.write()
        self.settings.save()

    def quit(self) -> bool:
        """
        Save state on the way out.

        Returns False (and saves nothing) while changes are still pending,
        so the front end can ask whether to apply or discard them.
        """
        if self.has_changes():
            return False
        self.save()
        return True

    # ------------------------------------------------------------------
    # Checksumming
    # ------------------------------------------------------------------

    @property
    def checksummer(self) -> Checksummer:
        if self._checksummer is None:
            self._checksummer = Checksummer(
                self.collection,
                self.root,
                tracked_dirs=self.settings.tracked_dirs,
                transports=self.transports,
            )
        return self._checksummer

    def refresh(self, progress: Optional[ProgressTracker] = None, names: Optional[Iterable[str]] = None) -> list[str]:
        """
        Re-read site manifests and local files.

        Returns:
            Names of the update sites that could not be reached
        """
        checksummer = self.checksummer
        checksummer.progress = progress
        try:
            return checksummer.update(names)
        finally:
            checksummer.progress = None

    def refresh_local(self, progress: Optional[ProgressTracker] = None) -> list[FileRecord]:
        """Re-check local files only, without contacting update sites."""
        checksummer = self.checksummer
        checksummer.progress = progress
        try:
            return checksummer.update_from_local()
        finally:
            checksummer.progress = None

    def check_read_only(self) -> list[str]:
        """Tracked files that exist but cannot be overwritten."""
        return find_read_only(self.collection, self.root)

    # ------------------------------------------------------------------
    # Update sites
    # ------------------------------------------------------------------

    def add_update_site(self, name: str, url: str, upload_url: str = "", username: str = "") -> UpdateSite:
        return self.collection.add_update_site(name, url, upload_url, username)

    def remove_update_site(self, name: str):
        self.transports.pop(name, None)
        self.collection.remove_update_site(name)

    def initialize_site(self, name: str, password: Optional[str] = None) -> bool:
        """Publish an empty manifest to a new uploadable site."""
        uploader = Uploader(self.collection, name, self.root, progress=None, password=password)
        return uploader.initialize_site()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_files(
        self,
        predicate: Optional[Callable[[FileRecord], bool]] = None,
        search: Optional[str] = None,
        site: Optional[str] = None,
    ) -> list[FileRecord]:
        """Records matching all given filters, sorted by name."""
        view = self.collection.view()
        if site is not None:
            view = view.filter(lambda r: r.site == site)
        if search:
            view = view.matching(search)
        if predicate is not None:
            view = view.filter(predicate)
        return sort_by_name(list(view), key=lambda r: r.name)

    def get(self, name: str) -> FileRecord:
        """Raises KeyError for an unknown file."""
        return self.collection[name]

    def status(self, name: str) -> Status:
        return self.get(name).status

    def action(self, name: str) -> Action:
        return self.get(name).action

    def valid_actions(self, name: str) -> tuple:
        return self.get(name).valid_actions(self.collection)

    def has_changes(self) -> bool:
        return self.collection.has_changes()

    def summary(self) -> ChangeSummary:
        return self.collection.summary()

    def dependencies(self, for_upload: bool = False) -> DependencyMap:
        """Files the pending actions implicate but that have no action yet."""
        return self.collection.get_dependencies(for_upload)

    def check_consistency(self) -> Optional[str]:
        return self.collection.check_consistency()

    # ------------------------------------------------------------------
    # Changing actions
    # ------------------------------------------------------------------

    def set_action(self, name: str, action: Action) -> bool:
        """Returns False when the file's status does not admit the action."""
        return self.get(name).set_action(self.collection, action)

    def set_first_valid_action(self, name: str, actions: Iterable[Optional[Action]]) -> bool:
        return self.get(name).set_first_valid_action(self.collection, actions)

    def clear_actions(self):
        self.collection.clear_actions()

    def resolve(self, for_upload: bool = False) -> list[FileRecord]:
        """
        Give implicated dependencies an action.

        Returns the records that were given one.

        Raises:
            DependencyConflict: the action set cannot be made consistent
        """
        resolver = DependencyResolver(self.collection, for_upload=for_upload)
        resolver.resolve_or_raise()
        return resolver.added

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def _downloader(self) -> FileDownloader:
        return FileDownloader(max_retries=self.settings.max_retries, timeout=self.settings.timeout)

    def make_installer(self, progress: Optional[ProgressTracker] = None) -> Installer:
        return Installer(self.collection, self.root, progress, self._downloader(), self.transports)

    def apply_changes(self, progress: Optional[ProgressTracker] = None) -> BatchResult:
        """Resolve install dependencies, then run the install batch."""
        self.resolve(for_upload=False)
        return self.make_installer(progress).start()

    def upload_site_name(self, site: Optional[str] = None) -> str:
        """Pick the site an upload goes to when the caller did not name one."""
        if site:
            return site
        if self.settings.upload_site:
            return self.settings.upload_site
        targets = self.collection.site_names_to_upload()
        if len(targets) == 1:
            return targets[0]
        if not targets:
            raise ValueError("No uploadable update site is targeted by the pending changes")
        raise ValueError(f"Changes target several update sites ({', '.join(targets)}); name one")

    def upload(self, site: Optional[str] = None, progress: Optional[ProgressTracker] = None,
               password: Optional[str] = None) -> BatchResult:
        """Resolve upload dependencies, then run the upload batch for one site."""
        self.resolve(for_upload=True)
        uploader = Uploader(self.collection, self.upload_site_name(site), self.root,
                            progress=progress, password=password)
        return uploader.upload()

    @property
    def worker(self) -> BatchWorker:
        """Single-thread executor for running batches off the caller's thread."""
        if self._worker is None:
            self._worker = BatchWorker(self.collection, self.root)
        return self._worker

    def close(self):
        if self._worker is not None:
            self._worker.shutdown()
            self._worker = None
        for transport in self.transports.values():
            transport.close()
        self.transports.clear()

    # ------------------------------------------------------------------
    # Self-update
    # ------------------------------------------------------------------

    def updater_needs_update(self) -> bool:
        record = self.collection.get(UPDATER_FILE)
        return record is not None and record.status == Status.UPDATEABLE

    def update_the_updater(self, progress: Optional[ProgressTracker] = None) -> bool:
        """
        Update only the updater's own file, leaving other pending actions alone.

        Runs against a one-file clone of the collection, then copies the
        outcome back. Returns True when the update was applied (or deferred
        until restart).
        """
        if not self.updater_needs_update():
            return False

        clone = self.collection.clone([self.collection[UPDATER_FILE]])
        clone_record = clone[UPDATER_FILE]
        clone_record.set_action(clone, Action.UPDATE)
        installer = Installer(clone, self.root, progress, self._downloader(), self.transports)
        result = installer.start(persist=False)

        record = self.collection[UPDATER_FILE]
        if UPDATER_FILE in result.completed:
            record.mark_installed()
        elif UPDATER_FILE not in result.deferred:
            return False
        if self.collection.store is not None:
            self.collection.write()
        return True
