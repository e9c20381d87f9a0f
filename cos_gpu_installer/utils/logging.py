"""Logging utilities for COS GPU Installer

Output goes to stdout and is flushed on every line so it interleaves with
the output of the commands we run when read back from the container log.
"""

import os
import sys


class Colors:
    """ANSI color codes for terminal output"""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[1;31m'
    GREEN = '\033[1;32m'
    YELLOW = '\033[1;33m'
    BLUE = '\033[1;34m'


def _use_color() -> bool:
    # Container logs are rarely a TTY; keep them free of escape codes.
    return sys.stdout.isatty() and "NO_COLOR" not in os.environ


def _emit(color, text, prefix=""):
    if _use_color():
        print(f"{prefix}{color}{text}{Colors.RESET}", flush=True)
    else:
        print(f"{prefix}{text}", flush=True)


def log_info(message):
    """Log info message in green"""
    _emit(Colors.GREEN, f"[INFO]  {message}")


def log_warn(message):
    """Log warning message in yellow"""
    _emit(Colors.YELLOW, f"[WARN]  {message}")


def log_error(message):
    """Log error message in red"""
    _emit(Colors.RED, f"[ERROR] {message}")


def log_step(message):
    """Log step message in blue with newline before"""
    _emit(Colors.BLUE, f"[STEP]  {message}", prefix="\n")


def log_success(message):
    """Log success message in bold green"""
    _emit(Colors.BOLD + Colors.GREEN, f"[OK]    {message}")
