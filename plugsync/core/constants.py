"""
Shared constants for plugsync.
"""

# Per-installation state directory (relative to the collection root)
STATE_DIR = ".plugsync"

# Local manifest, settings and deferred-work files inside STATE_DIR
MANIFEST_FILE = "manifest.json"
SETTINGS_FILE = "settings.json"
PENDING_FILE = "pending.json"

# Staging area for downloads being verified (inside STATE_DIR)
STAGING_DIR = "staging"

# Staged updates that could not replace a busy file wait here until next start
UPDATE_DIR = "update"

# Remote manifest name at the root of every update site
SITE_MANIFEST_FILE = "manifest.json"
SITE_LOCK_FILE = "manifest.json.lock"

# Directories scanned for files that no manifest knows about
TRACKED_DIRS = ("plugins", "jars", "lib", "macros", "scripts")

# Name prefixes that classify a file as a library rather than a plugin
LIBRARY_PREFIXES = ("jars/", "lib/")

# The updater's own file (used for self-update)
UPDATER_FILE = "jars/plugsync-updater.jar"

# Files never picked up by local discovery
IGNORED_SUFFIXES = {".part", ".tmp", ".lock"}
