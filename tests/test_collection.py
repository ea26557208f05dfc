"""
Tests for the Collection: views, dependency closure, consistency checks
and the in-process batch guard.
"""

import pytest

from plugsync.core import BatchInProgress
from plugsync.files import Action, Collection, FileRecord, RemoteVersion, Status


def make_collection(developer: bool = False) -> Collection:
    collection = Collection()
    upload_url = "/sites/main" if developer else ""
    collection.add_update_site("main", "/sites/main", upload_url=upload_url)
    return collection


def add(collection, name, status, dependencies=(), size=0, site="main") -> FileRecord:
    record = FileRecord(name, site=site, status=status, dependencies=set(dependencies), size=size)
    if site is not None and status.is_listed:
        record.remote[site] = RemoteVersion("sum-" + name, 20240101000000, size)
    return collection.add(record)


class TestConsistency:
    """check_consistency() diagnostics."""

    def test_uninstalling_a_dependency_is_reported(self):
        collection = make_collection()
        a = add(collection, "jars/A.jar", Status.INSTALLED)
        add(collection, "plugins/B.jar", Status.INSTALLED, dependencies=["jars/A.jar"])

        assert a.set_action(collection, Action.UNINSTALL)
        diagnostic = collection.check_consistency()

        assert diagnostic is not None
        assert "plugins/B.jar" in diagnostic
        assert "jars/A.jar" in diagnostic

    def test_uninstalling_both_is_consistent(self):
        collection = make_collection()
        a = add(collection, "jars/A.jar", Status.INSTALLED)
        b = add(collection, "plugins/B.jar", Status.INSTALLED, dependencies=["jars/A.jar"])
        a.set_action(collection, Action.UNINSTALL)
        b.set_action(collection, Action.UNINSTALL)

        assert collection.check_consistency() is None

    def test_missing_dependency_for_install(self):
        collection = make_collection()
        b = add(collection, "plugins/B.jar", Status.NOT_INSTALLED, dependencies=["jars/A.jar"])
        add(collection, "jars/A.jar", Status.NOT_INSTALLED)
        b.set_action(collection, Action.INSTALL)

        assert "will not be installed" in collection.check_consistency()

    def test_unknown_dependency_for_install(self):
        collection = make_collection()
        b = add(collection, "plugins/B.jar", Status.NOT_INSTALLED, dependencies=["jars/Nowhere.jar"])
        b.set_action(collection, Action.INSTALL)

        assert "not known to any update site" in collection.check_consistency()

    def test_install_against_remove_is_a_conflict(self):
        collection = make_collection(developer=True)
        a = add(collection, "jars/A.jar", Status.INSTALLED)
        b = add(collection, "plugins/B.jar", Status.NOT_INSTALLED, dependencies=["jars/A.jar"])
        assert a.set_action(collection, Action.REMOVE)
        assert b.set_action(collection, Action.INSTALL)

        assert "being removed" in collection.check_consistency()

    def test_forced_invalid_action_is_reported(self):
        collection = make_collection()
        record = add(collection, "plugins/A.jar", Status.INSTALLED)
        record.action = Action.INSTALL

        assert "not valid" in collection.check_consistency()

    def test_clean_collection(self):
        collection = make_collection()
        add(collection, "jars/A.jar", Status.INSTALLED)
        add(collection, "plugins/B.jar", Status.INSTALLED, dependencies=["jars/A.jar"])

        assert collection.check_consistency() is None


class TestDependencies:
    """get_dependencies() closure."""

    def test_transitive_closure(self):
        collection = make_collection()
        a = add(collection, "plugins/A.jar", Status.NOT_INSTALLED, dependencies=["jars/B.jar"])
        b = add(collection, "jars/B.jar", Status.NOT_INSTALLED, dependencies=["jars/C.jar"])
        c = add(collection, "jars/C.jar", Status.NOT_INSTALLED)
        a.set_action(collection, Action.INSTALL)

        implicated = collection.get_dependencies()

        assert set(implicated) == {b, c}
        assert implicated.names() == {"jars/B.jar": ["plugins/A.jar"], "jars/C.jar": ["jars/B.jar"]}

    def test_installed_dependency_not_implicated(self):
        collection = make_collection()
        add(collection, "jars/A.jar", Status.INSTALLED)
        b = add(collection, "plugins/B.jar", Status.NOT_INSTALLED, dependencies=["jars/A.jar"])
        b.set_action(collection, Action.INSTALL)

        assert not collection.get_dependencies()

    def test_cycle_terminates(self):
        collection = make_collection()
        a = add(collection, "plugins/A.jar", Status.NOT_INSTALLED, dependencies=["plugins/B.jar"])
        add(collection, "plugins/B.jar", Status.NOT_INSTALLED, dependencies=["plugins/A.jar"])
        a.set_action(collection, Action.INSTALL)

        assert collection.get_dependencies().names() == {"plugins/B.jar": ["plugins/A.jar"]}

    def test_upload_closure(self):
        collection = make_collection(developer=True)
        a = add(collection, "plugins/A.jar", Status.NEW, dependencies=["jars/B.jar"], site=None)
        b = add(collection, "jars/B.jar", Status.NEW, site=None)
        a.set_action(collection, Action.UPLOAD)

        assert set(collection.get_dependencies(for_upload=True)) == {b}
        assert not collection.get_dependencies(for_upload=False)


class TestViews:
    """Filtered views over the collection."""

    def test_views_follow_current_state(self):
        collection = make_collection()
        a = add(collection, "plugins/A.jar", Status.NOT_INSTALLED)
        add(collection, "plugins/B.jar", Status.INSTALLED)
        pending = collection.to_install_or_update()

        assert len(pending) == 0
        a.set_action(collection, Action.INSTALL)
        assert pending.names() == ["plugins/A.jar"]

    def test_search_is_case_insensitive(self):
        collection = make_collection()
        add(collection, "plugins/Fiji_Plugins.jar", Status.INSTALLED)
        add(collection, "jars/imagej.jar", Status.INSTALLED)

        assert collection.matching("FIJI").names() == ["plugins/Fiji_Plugins.jar"]
        assert len(collection.matching("  ")) == 2

    def test_for_update_site(self):
        collection = make_collection()
        collection.add_update_site("extra", "/sites/extra")
        add(collection, "plugins/A.jar", Status.INSTALLED)
        add(collection, "plugins/B.jar", Status.INSTALLED, site="extra")

        assert collection.for_update_site("extra").names() == ["plugins/B.jar"]

    def test_summary(self):
        collection = make_collection()
        a = add(collection, "plugins/A.jar", Status.NOT_INSTALLED, dependencies=["jars/B.jar"], size=100)
        add(collection, "jars/B.jar", Status.NOT_INSTALLED, size=50)
        c = add(collection, "plugins/C.jar", Status.INSTALLED)
        a.set_action(collection, Action.INSTALL)
        c.set_action(collection, Action.UNINSTALL)

        summary = collection.summary()

        assert summary.install == 1
        assert summary.implicated == 1
        assert summary.uninstall == 1
        assert summary.bytes_to_download == 150
        assert "install/update: 1+1" in str(summary)


class TestCollectionMutation:
    """Adding, removing and cloning."""

    def test_unknown_site_rejected(self):
        collection = make_collection()
        with pytest.raises(ValueError):
            collection.add(FileRecord("plugins/A.jar", site="nowhere"))

    def test_clone_is_independent(self):
        collection = make_collection()
        a = add(collection, "plugins/A.jar", Status.NOT_INSTALLED)
        add(collection, "plugins/B.jar", Status.NOT_INSTALLED)

        clone = collection.clone([a])
        clone["plugins/A.jar"].set_action(clone, Action.INSTALL)

        assert clone.names() == ["plugins/A.jar"]
        assert a.action == Action.NONE
        assert clone.get_update_site("main") is not collection.get_update_site("main")

    def test_remove_update_site(self):
        collection = make_collection()
        collection.add_update_site("extra", "/sites/extra")
        add(collection, "plugins/Kept.jar", Status.INSTALLED, site="extra")
        add(collection, "plugins/Gone.jar", Status.NOT_INSTALLED, site="extra")

        collection.remove_update_site("extra")

        assert collection.names() == ["plugins/Kept.jar"]
        kept = collection["plugins/Kept.jar"]
        assert kept.site is None
        assert kept.status == Status.LOCAL_ONLY

    def test_site_names_to_upload(self):
        collection = make_collection(developer=True)
        collection.add_update_site("readonly", "/sites/readonly")
        a = add(collection, "plugins/A.jar", Status.INSTALLED)
        a.set_action(collection, Action.UPLOAD)

        assert collection.has_uploadable_sites()
        assert collection.site_names_to_upload() == ["main"]

    def test_iteration_tolerates_mutation(self):
        collection = make_collection()
        add(collection, "plugins/A.jar", Status.INSTALLED)
        add(collection, "plugins/B.jar", Status.INSTALLED)

        for record in collection:
            collection.remove(record)

        assert len(collection) == 0


class TestBatchGuard:
    """Only one batch per collection."""

    def test_nested_batch_refused(self):
        collection = make_collection()
        with collection.batch():
            assert collection.batch_running
            with pytest.raises(BatchInProgress):
                with collection.batch():
                    pass
        assert not collection.batch_running
