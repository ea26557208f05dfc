"""
Tests for the uploader.

Verifies that:
- Uploaded files are published under versioned names with a new manifest
- A failure or cancellation mid-batch leaves the remote manifest untouched
- The site lock is always released, and a held lock blocks the upload
- Login failure aborts before anything is transferred
"""

import json
from unittest.mock import Mock, patch

import pytest

from conftest import md5

from plugsync.core import Canceled, SilentProgress, SiteLocked, SiteOutOfDate, TransportFailure
from plugsync.core.constants import SITE_LOCK_FILE
from plugsync.files import Action, Collection, FileRecord, Status
from plugsync.manifest import SiteManifest, versioned_name
from plugsync.sync import Checksummer, Installer, Uploader, upload_order
from plugsync.transport import LocalTransport


def developer_collection(root, site) -> Collection:
    collection = Collection()
    collection.add_update_site("dev", site.url, upload_url=site.url)
    Checksummer(collection, root).update()
    return collection


def write(root, name: str, content: bytes):
    path = root / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def read_manifest(site) -> SiteManifest:
    with open(site.manifest_path) as f:
        return SiteManifest.from_dict(json.load(f))


def read_manifest_files(directory):
    with open(directory / "manifest.json") as f:
        return json.load(f).get("files", [])


class StuckLockTransport(LocalTransport):
    """Directory site whose lock cannot be deleted."""

    def release_lock(self):
        super().release_lock()
        raise TransportFailure("Could not release lock manifest.json.lock")


class TestUpload:
    """Successful uploads."""

    def test_upload_new_file(self, root, site):
        write(root, "plugins/Foo.jar", b"foo v1")
        collection = developer_collection(root, site)
        record = collection["plugins/Foo.jar"]
        assert record.status == Status.NEW
        assert record.set_action(collection, Action.UPLOAD)

        result = Uploader(collection, "dev", root).upload(persist=False)

        assert result.ok
        assert result.transferred == ["plugins/Foo.jar"]
        manifest = read_manifest(site)
        entry = manifest.get("plugins/Foo.jar")
        assert entry.checksum == md5(b"foo v1")
        assert (site.directory / versioned_name("plugins/Foo.jar", entry.timestamp)).read_bytes() == b"foo v1"
        assert record.status == Status.INSTALLED
        assert record.action == Action.NONE
        assert record.site == "dev"
        assert collection.sites["dev"].timestamp == manifest.timestamp
        assert not (site.directory / SITE_LOCK_FILE).exists()

    def test_modified_file_keeps_history(self, root, site):
        site.publish("plugins/Foo.jar", b"foo v1")
        write(root, "plugins/Foo.jar", b"foo v1")
        collection = developer_collection(root, site)
        write(root, "plugins/Foo.jar", b"foo v2, edited")
        Checksummer(collection, root).update()
        record = collection["plugins/Foo.jar"]
        assert record.status == Status.MODIFIED
        record.set_action(collection, Action.UPLOAD)

        Uploader(collection, "dev", root).upload(persist=False)

        entry = read_manifest(site).get("plugins/Foo.jar")
        assert entry.checksum == md5(b"foo v2, edited")
        assert entry.size == len(b"foo v2, edited")
        assert record.size == entry.size
        assert md5(b"foo v1") in entry.previous
        # The old version is still there for anyone who has not refreshed
        assert (site.directory / versioned_name("plugins/Foo.jar", 20240101000000)).exists()

    def test_modified_upload_installs_elsewhere(self, root, site, temp_dir):
        site.publish("plugins/Foo.jar", b"foo v1")
        write(root, "plugins/Foo.jar", b"foo v1")
        collection = developer_collection(root, site)
        write(root, "plugins/Foo.jar", b"foo v2, a much longer edited copy")
        Checksummer(collection, root).update()
        collection["plugins/Foo.jar"].set_action(collection, Action.UPLOAD)
        Uploader(collection, "dev", root).upload(persist=False)

        other = temp_dir / "other"
        other.mkdir()
        client = Collection()
        client.add_update_site("main", site.url)
        Checksummer(client, other).update()
        client["plugins/Foo.jar"].set_action(client, Action.INSTALL)
        result = Installer(client, other).start()

        assert result.ok
        assert (other / "plugins/Foo.jar").read_bytes() == b"foo v2, a much longer edited copy"

    def test_remove_file(self, root, site):
        site.publish("plugins/Old.jar", b"old")
        write(root, "plugins/Old.jar", b"old")
        collection = developer_collection(root, site)
        record = collection["plugins/Old.jar"]
        assert record.set_action(collection, Action.REMOVE)

        Uploader(collection, "dev", root).upload(persist=False)

        assert read_manifest(site).get("plugins/Old.jar") is None
        assert record.status == Status.OBSOLETE_UNINSTALLED
        assert record.action == Action.NONE

    def test_initialize_site(self, root, temp_dir):
        directory = temp_dir / "fresh"
        directory.mkdir()
        collection = Collection()
        collection.add_update_site("fresh", str(directory), upload_url=str(directory))
        uploader = Uploader(collection, "fresh", root)

        assert uploader.initialize_site()
        assert (directory / "manifest.json").exists()
        assert not uploader.initialize_site()
        assert read_manifest_files(directory) == []


class TestUploadFailure:
    """Aborted uploads leave the site as it was."""

    def test_failed_transfer_leaves_manifest_untouched(self, root, site):
        site.publish("jars/Existing.jar", b"existing")
        write(root, "plugins/A.jar", b"a")
        write(root, "plugins/B.jar", b"b")
        collection = developer_collection(root, site)
        for name in ("plugins/A.jar", "plugins/B.jar"):
            collection[name].set_action(collection, Action.UPLOAD)
        before = site.manifest_bytes()

        real_upload = LocalTransport.upload

        def fail_on_b(self, source, remote_name):
            if remote_name.startswith("plugins/B.jar"):
                return False
            return real_upload(self, source, remote_name)

        with patch.object(LocalTransport, "upload", fail_on_b):
            with pytest.raises(TransportFailure) as exc_info:
                Uploader(collection, "dev", root).upload(persist=False)

        assert site.manifest_bytes() == before
        assert exc_info.value.result.transferred == ["plugins/A.jar"]
        for name in ("plugins/A.jar", "plugins/B.jar"):
            assert collection[name].status == Status.NEW
            assert collection[name].action == Action.UPLOAD
        assert not (site.directory / SITE_LOCK_FILE).exists()

    def test_locked_site(self, root, site):
        write(root, "plugins/A.jar", b"a")
        collection = developer_collection(root, site)
        collection["plugins/A.jar"].set_action(collection, Action.UPLOAD)
        lock = site.directory / SITE_LOCK_FILE
        lock.write_text("12345")
        before = site.manifest_bytes()

        with pytest.raises(SiteLocked):
            Uploader(collection, "dev", root).upload(persist=False)

        assert site.manifest_bytes() == before
        assert lock.read_text() == "12345"
        assert collection["plugins/A.jar"].action == Action.UPLOAD

    def test_login_failure_transfers_nothing(self, root, site):
        write(root, "plugins/A.jar", b"a")
        collection = developer_collection(root, site)
        collection["plugins/A.jar"].set_action(collection, Action.UPLOAD)
        transport = Mock()
        transport.login.return_value = False

        with pytest.raises(TransportFailure):
            Uploader(collection, "dev", root, transport=transport).upload(persist=False)

        transport.acquire_lock.assert_not_called()
        transport.upload.assert_not_called()
        transport.publish_manifest.assert_not_called()

    def test_site_changed_since_refresh(self, root, site):
        write(root, "plugins/A.jar", b"a")
        collection = developer_collection(root, site)
        collection["plugins/A.jar"].set_action(collection, Action.UPLOAD)
        site.publish("plugins/Other.jar", b"other", timestamp=20240105000000)
        site.manifest.timestamp = 20240105000000
        site.save()

        with pytest.raises(SiteOutOfDate):
            Uploader(collection, "dev", root).upload(persist=False)

        assert not (site.directory / SITE_LOCK_FILE).exists()

    def test_cancel_publishes_nothing(self, root, site):
        write(root, "plugins/A.jar", b"a")
        write(root, "plugins/B.jar", b"b")
        collection = developer_collection(root, site)
        for name in ("plugins/A.jar", "plugins/B.jar"):
            collection[name].set_action(collection, Action.UPLOAD)
        before = site.manifest_bytes()
        progress = SilentProgress()

        real_upload = LocalTransport.upload

        def upload_then_cancel(self, source, remote_name):
            progress.cancel()
            return real_upload(self, source, remote_name)

        with patch.object(LocalTransport, "upload", upload_then_cancel):
            with pytest.raises(Canceled) as exc_info:
                Uploader(collection, "dev", root, progress=progress).upload(persist=False)

        assert site.manifest_bytes() == before
        assert exc_info.value.result.transferred == ["plugins/A.jar"]
        assert collection["plugins/A.jar"].status == Status.NEW
        assert not (site.directory / SITE_LOCK_FILE).exists()
        assert progress.closed

    def test_lock_release_failure_after_publish(self, root, site):
        write(root, "plugins/A.jar", b"a")
        collection = developer_collection(root, site)
        record = collection["plugins/A.jar"]
        record.set_action(collection, Action.UPLOAD)
        progress = SilentProgress()
        transport = StuckLockTransport(site.url, site.url)

        result = Uploader(collection, "dev", root, transport=transport, progress=progress).upload(persist=False)

        assert result.completed == ["plugins/A.jar"]
        assert record.status == Status.INSTALLED
        assert record.action == Action.NONE
        assert collection.sites["dev"].timestamp == read_manifest(site).timestamp
        assert any("lock" in message for message in progress.messages)

    def test_lock_release_failure_keeps_original_error(self, root, site):
        write(root, "plugins/A.jar", b"a")
        collection = developer_collection(root, site)
        collection["plugins/A.jar"].set_action(collection, Action.UPLOAD)
        transport = StuckLockTransport(site.url, site.url)
        before = site.manifest_bytes()

        with patch.object(StuckLockTransport, "upload", return_value=False):
            with pytest.raises(TransportFailure, match="Upload of plugins/A.jar failed"):
                Uploader(collection, "dev", root, transport=transport).upload(persist=False)

        assert site.manifest_bytes() == before
        assert collection["plugins/A.jar"].action == Action.UPLOAD

    def test_read_only_site_refused(self, root, site):
        collection = Collection()
        collection.add_update_site("main", site.url)

        with pytest.raises(TransportFailure):
            Uploader(collection, "main", root).upload(persist=False)


class TestUploadOrder:
    """Requirements are transferred before their requirers."""

    def test_dependencies_first(self):
        plugin = FileRecord("plugins/A.jar", dependencies={"jars/B.jar"})
        library = FileRecord("jars/B.jar", dependencies={"jars/C.jar"})
        base = FileRecord("jars/C.jar")

        ordered = [r.name for r in upload_order([plugin, library, base])]

        assert ordered == ["jars/C.jar", "jars/B.jar", "plugins/A.jar"]

    def test_cycle_lists_each_once(self):
        a = FileRecord("plugins/A.jar", dependencies={"plugins/B.jar"})
        b = FileRecord("plugins/B.jar", dependencies={"plugins/A.jar"})

        ordered = upload_order([a, b])

        assert sorted(r.name for r in ordered) == ["plugins/A.jar", "plugins/B.jar"]

    def test_outside_dependencies_ignored(self):
        a = FileRecord("plugins/A.jar", dependencies={"jars/Published.jar"})
        assert upload_order([a]) == [a]
