"""Publishing NVIDIA user space artifacts to the host"""

import os
import shutil
import stat
import subprocess

from ..errors import PublishError
from ..utils.logging import log_info, log_step
from ..utils.system import run_command

_LIB_SUBDIR = os.path.join("lib", "x86_64-linux-gnu")
_BIN_SUBDIR = "bin"
_A_RX = stat.S_IRUSR | stat.S_IXUSR | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH


def create_uvm_device() -> None:
    """Create the unified memory device file."""
    run_command(["nvidia-modprobe", "-c0", "-u"])


def _copy_tree_contents(src_dir, dest_dir) -> int:
    """Copy every entry of ``src_dir`` into ``dest_dir``, overwriting.

    Symlinks are copied as symlinks, like ``cp -r``.
    """
    if not os.path.isdir(src_dir):
        raise PublishError(f"Nothing to publish: {src_dir} does not exist")
    os.makedirs(dest_dir, exist_ok=True)

    count = 0
    for entry in os.scandir(src_dir):
        dest = os.path.join(dest_dir, entry.name)
        if entry.is_symlink():
            if os.path.islink(dest) or os.path.isfile(dest):
                os.remove(dest)
            os.symlink(os.readlink(entry.path), dest)
        elif entry.is_dir():
            shutil.copytree(entry.path, dest, symlinks=True, dirs_exist_ok=True)
        else:
            if os.path.islink(dest):
                os.remove(dest)
            shutil.copy2(entry.path, dest)
        count += 1
    return count


def _make_world_readable(root) -> None:
    """Recursive ``chmod a+rx`` that leaves symlinks alone."""
    os.chmod(root, os.stat(root).st_mode | _A_RX)
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            path = os.path.join(dirpath, name)
            if os.path.islink(path):
                continue
            os.chmod(path, os.stat(path).st_mode | _A_RX)


def copy_files_to_host(config) -> None:
    """Copy user space libraries and debug utilities to the host output dirs.

    Makes these artifacts world readable and executable. Safe to repeat;
    existing files are overwritten.
    """
    publish = (
        (os.path.join(config.usr_writable_dir, _LIB_SUBDIR), config.lib_output_dir),
        (os.path.join(config.usr_writable_dir, _BIN_SUBDIR), config.bin_output_dir),
    )
    try:
        for src, dest in publish:
            count = _copy_tree_contents(src, dest)
            _make_world_readable(dest)
            log_info(f"Published {count} entries from {src} to {dest}")
    except OSError as e:
        raise PublishError(f"Failed to publish NVIDIA artifacts: {e}") from e


def post_installation_sequence(config) -> None:
    """Steps shared by a fresh install and an already installed driver."""
    log_step("Publishing NVIDIA artifacts")
    try:
        create_uvm_device()
    except (OSError, subprocess.CalledProcessError) as e:
        raise PublishError(f"Could not create the NVIDIA UVM device: {e}") from e
    # Copy nvidia user space libraries and debug tools to the host for use from other containers.
    copy_files_to_host(config)
