"""Overlay mounts that keep driver artifacts on the host.

/usr and /lib inside the container are overlaid with writable layers living
under the host-backed cache directory, so whatever the NVIDIA installer
writes there survives container restarts.
"""

import os
import subprocess
from dataclasses import dataclass

from ..errors import MountError
from ..utils.logging import log_info
from ..utils.system import run_command


@dataclass(frozen=True)
class OverlaySpec:
    lower_dir: str
    upper_dir: str
    work_dir: str

    @property
    def target(self) -> str:
        return self.lower_dir

    @property
    def mount_options(self) -> str:
        return f"lowerdir={self.lower_dir},upperdir={self.upper_dir},workdir={self.work_dir}"


def read_mounts(proc_mounts) -> list[tuple[str, str, str, list[str]]]:
    """Parse a /proc/mounts style table into (source, target, fstype, options)."""
    entries = []
    with open(proc_mounts, 'r') as f:
        for line in f:
            fields = line.split()
            if len(fields) < 4:
                continue
            # /proc/mounts escapes spaces in paths as \040
            target = fields[1].replace("\\040", " ")
            entries.append((fields[0], target, fields[2], fields[3].split(",")))
    return entries


def is_overlay_mounted(spec: OverlaySpec, proc_mounts) -> bool:
    """Check whether an overlay for ``spec`` is already active at its target."""
    lower = f"lowerdir={spec.lower_dir}"
    upper = f"upperdir={spec.upper_dir}"
    for _source, target, fstype, options in read_mounts(proc_mounts):
        if fstype == "overlay" and target == spec.target and lower in options and upper in options:
            return True
    return False


def mount_overlay(spec: OverlaySpec, proc_mounts) -> bool:
    """Mount ``spec`` unless it is already mounted.

    Returns:
        True if a new mount was made, False if it was already in place.
    """
    os.makedirs(spec.upper_dir, exist_ok=True)
    os.makedirs(spec.work_dir, exist_ok=True)

    if is_overlay_mounted(spec, proc_mounts):
        log_info(f"Overlay on {spec.target} already mounted")
        return False

    try:
        run_command(["mount", "-t", "overlay", "-o", spec.mount_options, "none", spec.target])
    except (OSError, subprocess.CalledProcessError) as e:
        raise MountError(f"Failed to mount overlay on {spec.target}: {e}") from e
    log_info(f"Mounted overlay on {spec.target} (upper: {spec.upper_dir})")
    return True


def setup_overlay_mounts(config) -> None:
    """Set up overlay mounts to capture NVIDIA driver artifacts on the host."""
    for spec in config.overlays:
        mount_overlay(spec, config.proc_mounts)
