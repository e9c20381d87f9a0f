"""System utilities for command execution and host metadata"""

import shlex
import subprocess
from .logging import log_info, log_error


def run_command(cmd, check=True, capture_output=False, cwd=None):
    """
    Execute a system command with logging

    Args:
        cmd: Command to execute as an argument list
        check: Whether to raise exception on failure
        capture_output: Whether to capture stdout/stderr on the result
        cwd: Working directory for the command

    Returns:
        CompletedProcess object
    """
    log_info(f"Running: {shlex.join(cmd)}")

    try:
        if capture_output:
            return subprocess.run(cmd, check=check, cwd=cwd,
                                  capture_output=True, text=True,
                                  stdin=subprocess.DEVNULL)
        return subprocess.run(cmd, check=check, cwd=cwd,
                              stdin=subprocess.DEVNULL)
    except subprocess.CalledProcessError:
        log_error(f"Command failed: {shlex.join(cmd)}")
        raise


def command_succeeds(cmd, cwd=None) -> bool:
    """Run a command only for its exit status."""
    return run_command(cmd, check=False, cwd=cwd).returncode == 0


def get_os_info(path):
    """Parse an os-release file into a dict.

    Missing or unreadable files yield an empty dict; callers decide
    whether that is fatal.
    """
    try:
        with open(path, 'r') as f:
            lines = f.readlines()
    except OSError:
        return {}

    info = {}
    for line in lines:
        line = line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        info[key] = value.strip('"\'')
    return info


def tail_file(path, lines=50) -> list[str]:
    """Return the last ``lines`` lines of a text file, or [] if unreadable."""
    try:
        with open(path, 'r', errors='replace') as f:
            return f.read().splitlines()[-lines:]
    except OSError:
        return []
