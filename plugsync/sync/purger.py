"""
File removal and deferred work for plugsync.

A file that cannot be deleted or replaced right now (locked, in use) is
recorded in .plugsync/pending.json and handled by apply_pending() on the
next start.
"""

import json
import os
from pathlib import Path
from typing import Tuple

from ..core.paths import get_pending_path, get_update_dir
from ..manifest import atomic_write_json


class PendingWork:
    """Removals and staged installs waiting for the next start."""

    def __init__(self, path: Path):
        self.path = path
        self.removals: list[str] = []
        self.installs: list[str] = []

    @classmethod
    def load(cls, root: Path) -> "PendingWork":
        pending = cls(get_pending_path(root))
        if pending.path.exists():
            try:
                with open(pending.path) as f:
                    data = json.load(f)
                pending.removals = list(data.get("remove", []))
                pending.installs = list(data.get("install", []))
            except (json.JSONDecodeError, IOError):
                pass
        return pending

    def save(self):
        if not self.removals and not self.installs:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            return
        atomic_write_json(self.path, {"remove": self.removals, "install": self.installs})

    def add_removal(self, name: str):
        if name not in self.removals:
            self.removals.append(name)
        if name in self.installs:
            self.installs.remove(name)

    def add_install(self, name: str):
        if name not in self.installs:
            self.installs.append(name)
        if name in self.removals:
            self.removals.remove(name)

    @property
    def is_empty(self) -> bool:
        return not self.removals and not self.installs


def remove_file(path: Path) -> bool:
    """
    Delete one file.

    Returns True when the file is gone (including when it never existed),
    False when the OS refused.
    """
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return True
    except OSError:
        return False


def remove_empty_dirs(path: Path, stop: Path):
    """Remove empty parent directories of path, up to (not including) stop."""
    current = path.parent
    while current != stop and stop in current.parents:
        try:
            current.rmdir()
        except OSError:
            break
        current = current.parent


def replace_file(staged: Path, dest: Path) -> bool:
    """Move a verified staged file over the live copy. False if the OS refused."""
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        os.replace(staged, dest)
        return True
    except OSError:
        return False


def apply_pending(root: Path) -> Tuple[int, int]:
    """
    Finish deferred removals and installs from a previous run.

    Returns:
        Tuple of (applied, still_pending)
    """
    pending = PendingWork.load(root)
    if pending.is_empty:
        return 0, 0

    applied = 0
    update_dir = get_update_dir(root)

    for name in list(pending.removals):
        path = root / name
        if remove_file(path):
            remove_empty_dirs(path, root)
            pending.removals.remove(name)
            applied += 1

    for name in list(pending.installs):
        staged = update_dir / name
        if not staged.exists():
            pending.installs.remove(name)
            continue
        if replace_file(staged, root / name):
            remove_empty_dirs(staged, update_dir)
            pending.installs.remove(name)
            applied += 1

    pending.save()
    return applied, len(pending.removals) + len(pending.installs)
