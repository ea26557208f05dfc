"""
Tests for the Updater facade, driven end to end against a directory site.
"""

import pytest

from conftest import md5

from plugsync.config import UpdaterSettings
from plugsync.core import DependencyConflict
from plugsync.core.constants import UPDATER_FILE
from plugsync.core.paths import get_settings_path
from plugsync.files import Action, Status, UpdateSite
from plugsync.updater import Updater


def make_updater(root, site, upload: bool = False) -> Updater:
    settings = UpdaterSettings(get_settings_path(root))
    settings.default_sites = [UpdateSite("main", site.url, upload_url=site.url if upload else "")]
    return Updater(root, settings)


class TestUpdater:
    """Inspecting and changing an installation."""

    def test_fresh_install_uses_default_sites(self, root, site):
        updater = make_updater(root, site)
        assert updater.collection.update_site_names() == ["main"]

    def test_install_and_reload(self, root, site):
        site.publish("plugins/A.jar", b"plugin a", dependencies=["jars/B.jar"])
        site.publish("jars/B.jar", b"library b")
        updater = make_updater(root, site)
        assert updater.refresh() == []
        assert updater.status("plugins/A.jar") == Status.NOT_INSTALLED

        assert updater.set_action("plugins/A.jar", Action.INSTALL)
        assert "jars/B.jar" in updater.dependencies().names()
        result = updater.apply_changes()

        assert sorted(result.completed) == ["jars/B.jar", "plugins/A.jar"]
        assert (root / "jars/B.jar").read_bytes() == b"library b"
        updater.save()

        reloaded = Updater(root, UpdaterSettings.load(get_settings_path(root)))
        assert reloaded.status("plugins/A.jar") == Status.INSTALLED
        assert reloaded.status("jars/B.jar") == Status.INSTALLED
        assert not reloaded.has_changes()

    def test_list_files_filters(self, root, site):
        site.publish("plugins/Alpha.jar", b"a")
        site.publish("jars/beta.jar", b"b")
        updater = make_updater(root, site)
        updater.refresh()

        assert [r.name for r in updater.list_files()] == ["jars/beta.jar", "plugins/Alpha.jar"]
        assert [r.name for r in updater.list_files(search="alpha")] == ["plugins/Alpha.jar"]
        assert updater.list_files(predicate=lambda r: r.status == Status.INSTALLED) == []

    def test_list_files_sorts_ignoring_case(self, root, site):
        site.publish("plugins/Beta.jar", b"b")
        site.publish("plugins/alpha.jar", b"a")
        updater = make_updater(root, site)
        updater.refresh()

        assert [r.name for r in updater.list_files()] == ["plugins/alpha.jar", "plugins/Beta.jar"]

    def test_quit_refuses_with_pending_changes(self, root, site):
        site.publish("plugins/A.jar", b"a")
        updater = make_updater(root, site)
        updater.refresh()
        updater.set_action("plugins/A.jar", Action.INSTALL)

        assert not updater.quit()
        assert not get_settings_path(root).exists()

        updater.clear_actions()
        assert updater.quit()
        assert get_settings_path(root).exists()

    def test_unknown_file(self, root, site):
        updater = make_updater(root, site)
        with pytest.raises(KeyError):
            updater.status("plugins/Nope.jar")

    def test_resolve_conflict(self, root, site):
        site.publish("plugins/A.jar", b"a", dependencies=["jars/B.jar"])
        site.publish("jars/B.jar", b"b")
        (root / "jars").mkdir()
        (root / "jars/B.jar").write_bytes(b"b")
        updater = make_updater(root, site)
        updater.refresh()
        updater.set_action("plugins/A.jar", Action.INSTALL)
        updater.set_action("jars/B.jar", Action.UNINSTALL)

        with pytest.raises(DependencyConflict):
            updater.resolve()


class TestUpdaterUpload:
    """Developer workflow through the facade."""

    def test_upload_picks_the_only_target(self, root, site):
        (root / "plugins").mkdir()
        (root / "plugins/Mine.jar").write_bytes(b"mine")
        updater = make_updater(root, site, upload=True)
        updater.refresh()
        assert updater.status("plugins/Mine.jar") == Status.NEW
        assert updater.set_action("plugins/Mine.jar", Action.UPLOAD)

        result = updater.upload()

        assert result.completed == ["plugins/Mine.jar"]
        assert updater.status("plugins/Mine.jar") == Status.INSTALLED
        assert site.manifest_path.read_text().count("plugins/Mine.jar") == 1

    def test_no_upload_target(self, root, site):
        updater = make_updater(root, site, upload=True)
        with pytest.raises(ValueError):
            updater.upload_site_name()
        assert updater.upload_site_name("main") == "main"


class TestSelfUpdate:
    """Updating the updater's own file."""

    def test_only_the_updater_is_touched(self, root, site):
        site.publish(UPDATER_FILE, b"updater v1")
        site.publish("plugins/A.jar", b"a")
        (root / "jars").mkdir()
        (root / UPDATER_FILE).write_bytes(b"updater v1")
        updater = make_updater(root, site)
        updater.refresh()
        site.publish(UPDATER_FILE, b"updater v2", timestamp=20240301000000, previous=[md5(b"updater v1")])
        updater.refresh()
        assert updater.updater_needs_update()
        updater.set_action("plugins/A.jar", Action.INSTALL)

        assert updater.update_the_updater()

        assert (root / UPDATER_FILE).read_bytes() == b"updater v2"
        assert updater.status(UPDATER_FILE) == Status.INSTALLED
        assert updater.action("plugins/A.jar") == Action.INSTALL
        assert not (root / "plugins/A.jar").exists()
        assert not updater.updater_needs_update()

    def test_nothing_to_do(self, root, site):
        updater = make_updater(root, site)
        assert not updater.update_the_updater()
