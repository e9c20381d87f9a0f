"""LoadPin unlock.

COS ships with LoadPin, which only allows kernel modules from the read-only
root to be loaded. Out-of-tree NVIDIA modules need it disabled through the
``lsm.module_locking=0`` kernel parameter, which means patching grub.cfg on
the EFI system partition and rebooting. After the reboot the installer runs
again from the top and finds the parameter on the live command line.
"""

import os
import re
import shutil
import subprocess
import time
from enum import Enum

from ..errors import BootConfigError
from ..utils.logging import log_info, log_warn, log_step
from ..utils.system import run_command

UNLOCK_PARAM = "lsm.module_locking=0"
GRUB_CFG = os.path.join("efi", "boot", "grub.cfg")
_BOOT_ENTRY_TOKEN = "cros_efi"
_UNPATCHED_ENTRY = re.compile(rf"{_BOOT_ENTRY_TOKEN}(?! {re.escape(UNLOCK_PARAM)}(?!\S))")


class LoadPinState(Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


def loadpin_state(proc_cmdline) -> LoadPinState:
    """Read the live kernel command line.

    LOCKED whenever the unlock parameter is absent.
    """
    with open(proc_cmdline, 'r') as f:
        cmdline = f.read()
    if UNLOCK_PARAM in cmdline.split():
        return LoadPinState.UNLOCKED
    return LoadPinState.LOCKED


def patch_grub_config(text: str) -> str:
    """Append the unlock parameter to every cros_efi boot entry lacking it.

    Entries that already carry the parameter are left alone, so a fully
    patched config is returned unchanged.

    Raises:
        BootConfigError: if there is no boot entry to patch.
    """
    if _BOOT_ENTRY_TOKEN not in text:
        raise BootConfigError(f"No '{_BOOT_ENTRY_TOKEN}' boot entry found in {GRUB_CFG}")
    return _UNPATCHED_ENTRY.sub(f"{_BOOT_ENTRY_TOKEN} {UNLOCK_PARAM}", text)


def _rewrite_grub_config(mount_path) -> None:
    grub_cfg = os.path.join(mount_path, GRUB_CFG)
    backup = f"{grub_cfg}.orig"

    try:
        with open(grub_cfg, 'r') as f:
            original = f.read()
    except OSError as e:
        raise BootConfigError(f"Cannot read {grub_cfg}: {e}") from e

    patched = patch_grub_config(original)
    if patched == original:
        # Rebooting into the same config cannot change the command line.
        raise BootConfigError(
            f"{GRUB_CFG} already carries {UNLOCK_PARAM} on every boot entry, "
            "but the running kernel was booted without it"
        )

    # Only unpatched content reaches this point, so the backup is always
    # the config as it was before this installer touched it.
    try:
        shutil.copy2(grub_cfg, backup)
    except OSError as e:
        raise BootConfigError(f"Cannot back up {grub_cfg}: {e}") from e
    log_info(f"Backed up {GRUB_CFG} to {GRUB_CFG}.orig")

    try:
        with open(grub_cfg, 'w') as f:
            f.write(patched)
    except OSError as e:
        raise BootConfigError(f"Cannot write {grub_cfg}: {e}") from e

    print(patched, flush=True)


def trigger_reboot(sysrq_trigger) -> None:
    """Reboot immediately through the magic SysRq trigger."""
    log_warn("Rebooting node to disable LoadPin")
    with open(sysrq_trigger, 'w') as f:
        f.write("b")


def unlock_loadpin_and_reboot_if_needed(config) -> bool:
    """Disable LoadPin and reboot if it is still active.

    Returns:
        True if a reboot was triggered, False if LoadPin is already off.

    Raises:
        BootConfigError: if the EFI partition cannot be mounted, backed up
            or rewritten, or if grub.cfg is already patched while LoadPin
            is still on. No reboot happens in that case.
    """
    if loadpin_state(config.proc_cmdline) is LoadPinState.UNLOCKED:
        log_info("LoadPin is disabled")
        return False

    log_step("Disabling LoadPin")
    mount_path = config.esp_mount_path
    os.makedirs(mount_path, exist_ok=True)
    try:
        run_command(["mount", config.esp_partition, mount_path])
    except (OSError, subprocess.CalledProcessError) as e:
        raise BootConfigError(f"Cannot mount {config.esp_partition} at {mount_path}: {e}") from e

    try:
        _rewrite_grub_config(mount_path)
        run_command(["sync"])
    except subprocess.CalledProcessError as e:
        raise BootConfigError(f"Failed to flush {GRUB_CFG} to disk: {e}") from e
    finally:
        run_command(["umount", mount_path], check=False)

    trigger_reboot(config.sysrq_trigger)
    return True


def wait_for_reboot(interval=60) -> None:
    """Block until the triggered reboot takes the process down."""
    while True:
        log_info("Waiting for node reboot...")
        time.sleep(interval)
