#!/usr/bin/env python3
"""
plugsync - keep a plugin collection in sync with its update sites.

Command-line front end: shows file statuses, marks files for install,
update, uninstall or upload, and runs the resulting batch.
"""

import argparse
import signal
import sys
from pathlib import Path

from plugsync import __version__
from plugsync.core.errors import (
    Canceled,
    DependencyConflict,
    ManifestWriteFailure,
    TransportFailure,
    UpdaterError,
)
from plugsync.core.formatting import format_size, timestamp_to_iso, to_posix
from plugsync.files.record import Action, ActionChoice, Status
from plugsync.sync.results import BatchResult
from plugsync.ui import Colors, ConsoleProgress, EscMonitor, action_label, status_label
from plugsync.updater import Updater

INSTALL_OR_UPDATE = ActionChoice(("Install", Action.INSTALL), ("Update", Action.UPDATE))
UNINSTALL = ActionChoice(("Uninstall", Action.UNINSTALL))
UPLOAD = ActionChoice(("Upload", Action.UPLOAD))
REMOVE = ActionChoice(("Remove", Action.REMOVE))


# ============================================================================
# Main Application
# ============================================================================


class UpdateApp:
    """Main application controller."""

    def __init__(self, root: Path = None, offline: bool = False):
        self.updater = Updater(root)
        self.offline = offline

    def load(self):
        applied, waiting = self.updater.apply_pending()
        if applied:
            print(f"Applied {applied} change(s) left over from the last run.")
        if waiting:
            print(f"{Colors.YELLOW}{waiting} change(s) still waiting; close programs using them and rerun.{Colors.RESET}")

        if self.offline:
            print("Checking local files...")
            self.updater.refresh_local()
        else:
            print("Checking update sites...")
            unreachable = self.updater.refresh()
            for name in unreachable:
                print(f"{Colors.YELLOW}Could not reach update site '{name}'; its files are unchanged.{Colors.RESET}")

        read_only = self.updater.check_read_only()
        if read_only:
            print(f"{Colors.YELLOW}Warning: {len(read_only)} file(s) are read-only and cannot be updated:{Colors.RESET}")
            for name in read_only[:10]:
                print(f"  {name}")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def show_status(self, search: str = None, site: str = None, changed_only: bool = False):
        records = self.updater.list_files(search=search, site=site)
        if changed_only:
            records = [r for r in records if r.status not in (Status.INSTALLED, Status.OBSOLETE_UNINSTALLED)]
        if not records:
            print("No files.")
            return
        width = max(len(r.name) for r in records)
        for record in records:
            site_name = record.site or "-"
            print(f"  {record.name:<{width}}  {status_label(record.status):<24} "
                  f"{Colors.MUTED}{site_name}{Colors.RESET} {action_label(record.action)}")

    def show_sites(self):
        collection = self.updater.collection
        if not collection.sites:
            print("No update sites.")
            return
        for site in collection.sites.values():
            count = len(collection.for_update_site(site.name))
            upload = f" (upload: {site.upload_url})" if site.is_uploadable else ""
            read = timestamp_to_iso(site.timestamp) or "never read"
            print(f"  {Colors.BOLD}{site.name}{Colors.RESET}  {site.url}{upload}  {count} file(s)  {Colors.MUTED}{read}{Colors.RESET}")

    def mark(self, names: list, choice: ActionChoice) -> int:
        """Apply an action choice to the named files (or to matching searches)."""
        collection = self.updater.collection
        marked = 0
        for pattern in map(to_posix, names):
            records = [collection[pattern]] if pattern in collection else list(collection.matching(pattern))
            if not records:
                print(f"{Colors.RED}No file matches '{pattern}'{Colors.RESET}")
                continue
            for record in records:
                if choice.apply(record, collection):
                    marked += 1
                else:
                    print(f"  {record.name}: not possible while {record.status.value.replace('_', ' ')}")
        return marked

    def mark_all_updateable(self) -> int:
        collection = self.updater.collection
        marked = 0
        for record in collection.updateable():
            if record.set_action(collection, Action.UPDATE):
                marked += 1
        return marked

    def confirm(self, assume_yes: bool) -> bool:
        summary = self.updater.summary()
        if summary.is_empty:
            print("Nothing to do.")
            return False
        print(f"Pending: {summary}")
        implicated = self.updater.dependencies()
        if implicated:
            print("Also needed:")
            for line in str(implicated).splitlines():
                print(f"  {line}")
        if assume_yes:
            return True
        try:
            answer = input("Proceed? [y/N] ")
        except EOFError:
            return False
        return answer.strip().lower() in ("y", "yes")

    def apply(self) -> bool:
        progress = ConsoleProgress()
        return self._run_batch(progress, lambda: self.updater.apply_changes(progress))

    def upload(self, site: str = None, password: str = None) -> bool:
        progress = ConsoleProgress()
        return self._run_batch(progress, lambda: self.updater.upload(site, progress, password))

    def _run_batch(self, progress: ConsoleProgress, run) -> bool:
        """Run a batch on the worker thread; ESC or Ctrl+C cancel it between files."""
        original_handler = None

        def handle_cancel():
            if not progress.cancelled:
                progress.cancel()
                progress.write("\n  Cancelling after the current file...")

        def handle_interrupt(signum, frame):
            handle_cancel()

        try:
            original_handler = signal.signal(signal.SIGINT, handle_interrupt)
        except ValueError:
            pass

        esc_monitor = EscMonitor(on_esc=handle_cancel)
        esc_monitor.start()
        future = self.updater.worker.submit(run)
        try:
            result = future.result()
        except Canceled as e:
            self._print_result(e.result)
            print(f"{Colors.YELLOW}Canceled.{Colors.RESET} Files already processed keep their new state.")
            return False
        except DependencyConflict as e:
            print(f"{Colors.RED}Cannot proceed; dependency conflicts:{Colors.RESET}")
            for conflict in e.conflicts:
                print(f"  {conflict}")
            return False
        except (ManifestWriteFailure, TransportFailure) as e:
            self._print_result(e.result)
            print(f"{Colors.RED}{e}{Colors.RESET}")
            return False
        except (UpdaterError, ValueError) as e:
            print(f"{Colors.RED}{e}{Colors.RESET}")
            return False
        finally:
            esc_monitor.stop()
            try:
                signal.signal(signal.SIGINT, original_handler or signal.SIG_DFL)
            except ValueError:
                pass

        self._print_result(result)
        return result.ok

    def _print_result(self, result: BatchResult):
        if result is None:
            return
        print(f"  {result}")
        if result.bytes_done:
            print(f"  Transferred {format_size(result.bytes_done)}")
        for name in result.deferred:
            print(f"  {Colors.YELLOW}{name}{Colors.RESET}: will be finished on next start")
        for error in result.errors:
            print(f"  {Colors.RED}{error.name}{Colors.RESET}: {error.message}")

    def close(self):
        self.updater.close()


# ============================================================================
# Entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="plugsync - keep a plugin collection in sync with its update sites"
    )
    parser.add_argument("--root", type=Path, help="Collection root (default: $PLUGSYNC_ROOT or the app folder)")
    parser.add_argument("--offline", action="store_true", help="Do not contact update sites")
    parser.add_argument("--version", action="version", version=f"plugsync {__version__}")
    parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    sub = parser.add_subparsers(dest="command")

    status = sub.add_parser("status", help="Show file statuses")
    status.add_argument("search", nargs="?", help="Only files whose name contains this text")
    status.add_argument("--site", help="Only files from this update site")
    status.add_argument("--changed", action="store_true", help="Hide up-to-date and removed files")

    sub.add_parser("sites", help="List update sites")

    add_site = sub.add_parser("add-site", help="Add an update site")
    add_site.add_argument("name")
    add_site.add_argument("url")
    add_site.add_argument("--upload-url", default="")
    add_site.add_argument("--user", default="")
    add_site.add_argument("--init", action="store_true", help="Publish an empty manifest to the new site")

    remove_site = sub.add_parser("remove-site", help="Forget an update site")
    remove_site.add_argument("name")

    for command, help_text in (
        ("install", "Install or update files"),
        ("uninstall", "Uninstall files"),
        ("upload", "Upload files to an update site"),
        ("remove", "Remove files from an update site"),
    ):
        p = sub.add_parser(command, help=help_text)
        p.add_argument("names", nargs="+", help="File names or search text")
        if command in ("upload", "remove"):
            p.add_argument("--site", help="Target update site")
            p.add_argument("--password", help="Upload password (default: $PLUGSYNC_PASSWORD)")

    sub.add_parser("update", help="Update every updateable file")
    sub.add_parser("refresh", help="Re-check files and save the manifest")
    return parser


def main(argv=None) -> int:
    """Entry point."""
    args = build_parser().parse_args(argv)
    app = UpdateApp(root=args.root, offline=args.offline)
    try:
        return run_command(app, args)
    finally:
        app.close()


def run_command(app: UpdateApp, args) -> int:
    command = args.command or "status"
    updater = app.updater

    if command in ("add-site", "remove-site"):
        if command == "add-site":
            updater.add_update_site(args.name, args.url, args.upload_url, args.user)
            if args.init and not updater.initialize_site(args.name):
                print(f"Update site '{args.name}' already has a manifest.")
        else:
            updater.remove_update_site(args.name)
        updater.save()
        return 0

    app.load()

    if command == "status":
        app.show_status(args.search, args.site, args.changed)
        if updater.updater_needs_update():
            print(f"{Colors.YELLOW}A new version of the updater is available; run 'update'.{Colors.RESET}")
        return 0
    if command == "sites":
        app.show_sites()
        return 0
    if command == "refresh":
        updater.save()
        return 0

    if command == "update":
        if updater.updater_needs_update():
            print("Updating the updater first...")
            updater.update_the_updater(ConsoleProgress())
        app.mark_all_updateable()
    elif command == "install":
        app.mark(args.names, INSTALL_OR_UPDATE)
    elif command == "uninstall":
        app.mark(args.names, UNINSTALL)
    elif command in ("upload", "remove"):
        app.mark(args.names, UPLOAD if command == "upload" else REMOVE)

    if not app.confirm(args.yes):
        updater.clear_actions()
        return 0

    if command in ("upload", "remove"):
        ok = app.upload(args.site, args.password)
    else:
        ok = app.apply()
    return 0 if ok else 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nCancelled by user.")
        sys.exit(0)
