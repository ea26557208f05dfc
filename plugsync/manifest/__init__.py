"""
Manifest persistence for plugsync.

The local manifest round-trips the whole collection; site manifests list
what each update site publishes.
"""

from .manifest import (
    ManifestStore,
    SiteManifest,
    SiteEntry,
    atomic_write_json,
    versioned_name,
)

__all__ = [
    "ManifestStore",
    "SiteManifest",
    "SiteEntry",
    "atomic_write_json",
    "versioned_name",
]
