"""
Path helpers for plugsync.

Everything plugsync writes lives under <root>/.plugsync, except staged
updates that wait in <root>/update for the next start.
"""

import os
import sys
from pathlib import Path
from typing import Optional

from .constants import STATE_DIR, MANIFEST_FILE, SETTINGS_FILE, PENDING_FILE, STAGING_DIR, UPDATE_DIR


def get_app_dir() -> Path:
    """Get the directory where the app is located (default collection root)."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    return Path(__file__).parent.parent.parent


def get_root(root: Optional[Path] = None) -> Path:
    """Resolve the collection root: explicit path, $PLUGSYNC_ROOT, or the app dir."""
    if root is not None:
        return Path(root)
    env_root = os.environ.get("PLUGSYNC_ROOT")
    if env_root:
        return Path(env_root)
    return get_app_dir()


def get_state_dir(root: Path) -> Path:
    return root / STATE_DIR


def get_manifest_path(root: Path) -> Path:
    """Get path to the local manifest."""
    return get_state_dir(root) / MANIFEST_FILE


def get_settings_path(root: Path) -> Path:
    """Get path to the user settings file."""
    return get_state_dir(root) / SETTINGS_FILE


def get_pending_path(root: Path) -> Path:
    """Get path to the deferred-work list."""
    return get_state_dir(root) / PENDING_FILE


def get_staging_dir(root: Path) -> Path:
    """Get the download staging directory, creating it if needed."""
    staging = get_state_dir(root) / STAGING_DIR
    staging.mkdir(parents=True, exist_ok=True)
    return staging


def get_update_dir(root: Path) -> Path:
    """Get the directory holding staged updates for busy files."""
    return root / UPDATE_DIR
