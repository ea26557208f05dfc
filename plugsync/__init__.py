"""
plugsync - keep a local plugin collection in sync with its update sites.

Tracks every file's local and remote checksums, derives a status for each,
resolves dependency implications and runs install or upload batches.

Import from submodules directly:
    from plugsync.files import Collection, FileRecord, Status, Action
    from plugsync.sync import Checksummer, DependencyResolver, Installer, Uploader
    from plugsync.updater import Updater
"""


def _get_version():
    """Read version from VERSION file."""
    from pathlib import Path
    version_file = Path(__file__).parent.parent / "VERSION"
    if version_file.exists():
        return version_file.read_text().strip()
    return "0.0.0"


__version__ = _get_version()
