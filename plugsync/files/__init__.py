"""
Tracked files: records, the status/action state machine and the collection.
"""

from .record import Action, ActionChoice, FileRecord, RemoteVersion, Status
from .collection import ChangeSummary, Collection, DependencyMap, FilesView, UpdateSite

__all__ = [
    "Action",
    "ActionChoice",
    "FileRecord",
    "RemoteVersion",
    "Status",
    "ChangeSummary",
    "Collection",
    "DependencyMap",
    "FilesView",
    "UpdateSite",
]
