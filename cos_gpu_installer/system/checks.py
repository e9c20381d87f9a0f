"""Host preconditions: platform, GPU presence and kernel commit"""

import subprocess

from ..errors import PlatformError, PreconditionError, KernelVersionError
from ..utils.logging import log_info, log_error
from ..utils.system import run_command, get_os_info

EXPECTED_PLATFORM_ID = "cos"


def verify_base_image(config) -> None:
    """Refuse to run anywhere but Container-Optimized OS.

    Raises:
        PlatformError: if the host os-release ID is not ``cos``.
    """
    os_info = get_os_info(config.host_os_release)
    platform_id = os_info.get("ID", "")
    if platform_id != EXPECTED_PLATFORM_ID:
        raise PlatformError(
            "This installer is designed to run on Container-Optimized OS only "
            f"(found ID={platform_id or '<unset>'} in {config.host_os_release})"
        )
    log_info(f"Host is Container-Optimized OS {os_info.get('VERSION_ID', '')}".rstrip())


def check_nvidia_device() -> bool:
    """Return True when an NVIDIA device sits on the PCI bus."""
    try:
        result = run_command(["lspci"], capture_output=True)
    except (OSError, subprocess.CalledProcessError) as e:
        raise PreconditionError(f"Could not enumerate PCI devices: {e}") from e

    output = result.stdout or ""
    print(output, end="" if output.endswith("\n") else "\n", flush=True)
    if any("nvidia" in line.lower() for line in output.splitlines()):
        log_info("Found NVIDIA device on this instance.")
        return True
    log_info("No NVIDIA devices attached to this instance.")
    return False


def resolve_kernel_commit(config) -> str:
    """Determine the kernel source commit matching the running host kernel.

    An explicit LAKITU_KERNEL_SHA1 override is used verbatim. Otherwise the
    KERNEL_COMMIT_ID of the host os-release is used.

    Raises:
        KernelVersionError: if neither source yields a commit.
    """
    if config.kernel_commit_override:
        log_info(f"Using kernel commit override {config.kernel_commit_override}")
        return config.kernel_commit_override

    os_info = get_os_info(config.host_os_release)
    commit = os_info.get("KERNEL_COMMIT_ID", "").strip()
    if not commit:
        log_error("Failed to identify kernel commit ID for underlying COS base image "
                  f"from {config.host_os_release}")
        for key, value in os_info.items():
            log_error(f"  {key}={value}")
        raise KernelVersionError("Kernel commit ID could not be determined")

    log_info(f"Host kernel commit: {commit}")
    return commit
