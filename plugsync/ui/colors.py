"""
Shared color definitions for terminal output.
"""

from ..files.record import Action, Status


class Colors:
    RESET = "\x1b[0m"
    BOLD = "\x1b[1m"
    DIM = "\x1b[2m"
    GREEN = "\x1b[38;2;74;222;128m"
    YELLOW = "\x1b[38;2;250;204;21m"
    RED = "\x1b[38;2;248;113;113m"
    INDIGO = "\x1b[38;2;99;102;241m"
    PINK = "\x1b[38;2;244;114;182m"
    MUTED = "\x1b[38;2;148;163;184m"
    MUTED_DIM = "\x1b[38;2;90;100;110m"


STATUS_COLORS = {
    Status.INSTALLED: Colors.GREEN,
    Status.UPDATEABLE: Colors.YELLOW,
    Status.MODIFIED: Colors.PINK,
    Status.NOT_INSTALLED: Colors.MUTED,
    Status.OBSOLETE: Colors.RED,
    Status.OBSOLETE_UNINSTALLED: Colors.MUTED_DIM,
    Status.NEW: Colors.INDIGO,
    Status.LOCAL_ONLY: Colors.INDIGO,
}


def status_label(status: Status) -> str:
    """Status name colored for the terminal, e.g. 'updateable' in yellow."""
    color = STATUS_COLORS.get(status, "")
    return f"{color}{status.value.replace('_', ' ')}{Colors.RESET}"


def action_label(action: Action) -> str:
    if action == Action.NONE:
        return ""
    return f"{Colors.BOLD}{action.value}{Colors.RESET}"
