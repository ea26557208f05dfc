"""
Terminal presentation for plugsync: colors, progress display and the ESC
cancel monitor.
"""

from .colors import Colors, action_label, status_label
from .keyboard import EscMonitor
from .progress_display import ConsoleProgress

__all__ = [
    "Colors",
    "action_label",
    "status_label",
    "EscMonitor",
    "ConsoleProgress",
]
