"""Terminal output helpers for the demultiplexing step.

All step output goes through these helpers so that it is coloured on a
terminal and captured verbatim by ``log_manager.LogCapture``.
"""

from env_config import DEBUG_OUTPUT

_debug_enabled = DEBUG_OUTPUT


class Colors:
    """Terminal colors for pretty output."""
    HEADER = '\033[95m'
    OKBLUE = '\033[94m'
    OKCYAN = '\033[96m'
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    DIM = '\033[2m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


def set_debug(enabled: bool) -> None:
    """Enable or disable ``print_debug`` output."""
    global _debug_enabled
    _debug_enabled = enabled


def print_header(text: str):
    """Print section header."""
    print(f"\n{Colors.HEADER}{Colors.BOLD}{'='*60}{Colors.ENDC}")
    print(f"{Colors.HEADER}{Colors.BOLD}{text}{Colors.ENDC}")
    print(f"{Colors.HEADER}{Colors.BOLD}{'='*60}{Colors.ENDC}\n")


def print_success(text: str):
    """Print success message."""
    print(f"{Colors.OKGREEN}OK {text}{Colors.ENDC}")


def print_warning(text: str):
    """Print warning message."""
    print(f"{Colors.WARNING}! {text}{Colors.ENDC}")


def print_error(text: str):
    """Print error message."""
    print(f"{Colors.FAIL}X {text}{Colors.ENDC}")


def print_info(text: str):
    """Print info message."""
    print(f"{Colors.OKCYAN}> {text}{Colors.ENDC}")


def print_debug(text: str):
    """Print debug message (only when debug output is enabled)."""
    if _debug_enabled:
        print(f"{Colors.DIM}  {text}{Colors.ENDC}")


def append_message(current: str, addition: str, separator: str = "; ") -> str:
    """Append text to a message, skipping empty parts.

    >>> append_message("Copy failed", "disk full")
    'Copy failed; disk full'
    """
    if not addition:
        return current
    if not current:
        return addition
    return f"{current}{separator}{addition}"
