"""Installer configuration.

All tunables are read from the environment once, in the CLI, and passed
explicitly to every component as an immutable InstallerConfig.

Environment Variables:
    BASE_DIR - Directory mapped to a stateful partition on the host.
        Defaults to ``/rootfs/nvidia``.
    LAKITU_KERNEL_SHA1 (Optional) - Kernel commit of the host. When unset the
        commit is read from the host's os-release.
    DEVICE_PLUGIN_ENABLED - ``true`` when a device plugin advertises GPUs,
        in which case the kubelet is not restarted. Defaults to false.

Artifacts produced under BASE_DIR:
    lib/*    - NVIDIA CUDA libraries
    bin/*    - NVIDIA debug utilities
    .cache/* - overlay layers holding the driver install across restarts
"""

import os
from dataclasses import dataclass

from .system.mounts import OverlaySpec

DEFAULT_BASE_DIR = "/rootfs/nvidia"


@dataclass(frozen=True)
class DriverPackageSpec:
    """A pinned vendor driver release."""
    version: str
    url: str
    md5sum: str
    pkg_name: str


_NVIDIA_DRIVER_VERSION = "375.51"

# Source: https://www.nvidia.com/Download/index.aspx?lang=en-us
NVIDIA_DRIVER = DriverPackageSpec(
    version=_NVIDIA_DRIVER_VERSION,
    url=(f"https://us.download.nvidia.com/XFree86/Linux-x86_64/{_NVIDIA_DRIVER_VERSION}/"
         f"NVIDIA-Linux-x86_64-{_NVIDIA_DRIVER_VERSION}.run"),
    md5sum="beb44468e620f77cbcc25ce33337af01",
    pkg_name=f"NVIDIA-Linux-x86_64-{_NVIDIA_DRIVER_VERSION}.run",
)


@dataclass(frozen=True)
class InstallerConfig:
    base_dir: str = DEFAULT_BASE_DIR
    kernel_commit_override: str | None = None
    device_plugin_enabled: bool = False
    driver: DriverPackageSpec = NVIDIA_DRIVER

    # Host locations as seen from inside the installer container.
    kernel_src_dir: str = "/lakitu-kernel"
    driver_dir: str = "/nvidia"
    host_os_release: str = "/rootfs/etc/os-release"
    proc_cmdline: str = "/proc/cmdline"
    proc_config: str = "/proc/config.gz"
    proc_mounts: str = "/proc/mounts"
    sysrq_trigger: str = "/sysrq"
    esp_partition: str = "/dev/sda12"
    esp_mount_path: str = "/tmp/esp"
    usr_dir: str = "/usr"
    lib_dir: str = "/lib"

    @classmethod
    def from_env(cls, environ=None) -> "InstallerConfig":
        """Build the configuration from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            base_dir=env.get("BASE_DIR") or DEFAULT_BASE_DIR,
            kernel_commit_override=env.get("LAKITU_KERNEL_SHA1") or None,
            device_plugin_enabled=env.get("DEVICE_PLUGIN_ENABLED", "false").strip().lower() == "true",
        )

    @property
    def cache_dir(self) -> str:
        return os.path.join(self.base_dir, ".cache")

    @property
    def usr_writable_dir(self) -> str:
        return os.path.join(self.cache_dir, "usr-writable")

    @property
    def usr_work_dir(self) -> str:
        return os.path.join(self.cache_dir, "usr-work")

    @property
    def lib_writable_dir(self) -> str:
        return os.path.join(self.cache_dir, "lib-writable")

    @property
    def lib_work_dir(self) -> str:
        return os.path.join(self.cache_dir, "lib-work")

    @property
    def lib_output_dir(self) -> str:
        return os.path.join(self.base_dir, "lib")

    @property
    def bin_output_dir(self) -> str:
        return os.path.join(self.base_dir, "bin")

    @property
    def installer_log(self) -> str:
        return os.path.join(self.driver_dir, "nvidia-installer.log")

    @property
    def overlays(self) -> tuple[OverlaySpec, ...]:
        """Overlays capturing driver artifacts written under /usr and /lib."""
        return (
            OverlaySpec(self.usr_dir, self.usr_writable_dir, self.usr_work_dir),
            OverlaySpec(self.lib_dir, self.lib_writable_dir, self.lib_work_dir),
        )
