"""Kubelet notification after the GPU becomes usable"""

import subprocess

from ..utils.logging import log_info, log_warn
from ..utils.system import run_command


def restart_kubelet(config) -> bool:
    """Send SIGTERM to the kubelet so it re-scans node resources.

    Best effort: a missing kubelet or a failed signal is only logged.

    Returns:
        True if the kubelet was signalled.
    """
    if config.device_plugin_enabled:
        log_info("Device plugin enabled. Skip restarting kubelet")
        return False

    try:
        if run_command(["pidof", "kubelet"], check=False, capture_output=True).returncode != 0:
            log_info("kubelet is not running. Nothing to restart")
            return False
        log_info("Sending SIGTERM to kubelet")
        run_command(["pkill", "-SIGTERM", "kubelet"])
    except (OSError, subprocess.CalledProcessError) as e:
        log_warn(f"Could not signal kubelet: {e}")
        return False
    return True
