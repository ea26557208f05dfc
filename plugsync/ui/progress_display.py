"""
Terminal progress display for plugsync batches.
"""

import shutil
import time

from ..core.formatting import format_duration, format_size
from ..core.progress import ProgressTracker
from .colors import Colors


class ConsoleProgress(ProgressTracker):
    """
    Progress tracker that prints a percentage line per finished item.

    Lines are printed only when the label changes, so byte-level ticks for a
    single file do not flood the terminal.
    """

    def __init__(self, show_bytes: bool = True):
        super().__init__()
        self.show_bytes = show_bytes
        self.start_time = time.time()
        self._last_label = ""

    def set_title(self, title: str):
        super().set_title(title)
        self.start_time = time.time()
        self._last_label = ""
        with self.lock:
            print(f"  {Colors.BOLD}{title}{Colors.RESET} {Colors.MUTED}(press ESC to cancel){Colors.RESET}")

    def update(self, done: int, total: int, label: str = ""):
        super().update(done, total, label)
        with self.lock:
            if self._closed or not label or label == self._last_label:
                return
            self._last_label = label
            self._print_line()

    def _print_line(self):
        term_width = shutil.get_terminal_size().columns
        pct = (self.done_count / self.total_count * 100) if self.total_count > 0 else 100.0
        core = f"  {pct:5.1f}%"
        if self.show_bytes and self.total_count:
            core += f" ({format_size(self.done_count)}/{format_size(self.total_count)})"

        label = self.label
        remaining = term_width - len(core) - 5
        if remaining > 10:
            if len(label) > remaining:
                label = label[:remaining-3] + "..."
            line = f"{core}  {label}"
        else:
            line = core
        print(line)

    def done(self):
        elapsed = time.time() - self.start_time
        with self.lock:
            if not self._closed:
                print(f"  {Colors.GREEN}Done{Colors.RESET} in {format_duration(elapsed)}")
        super().done()

    def canceled(self):
        with self.lock:
            if not self._closed:
                print(f"  {Colors.YELLOW}Cancelled.{Colors.RESET}")
        super().canceled()
