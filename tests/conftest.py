from __future__ import annotations

import gzip
import hashlib
import io
import os
import subprocess
from pathlib import Path

import pytest

from cos_gpu_installer.config import InstallerConfig, DriverPackageSpec
from cos_gpu_installer.utils import system as system_utils

DRIVER_PAYLOAD = b"#!/bin/sh\necho fake NVIDIA installer\n" * 64
LSPCI_WITH_GPU = (
    "00:00.0 Host bridge: Intel Corporation 440FX - 82441FX PMC [Natoma] (rev 02)\n"
    "00:04.0 3D controller: NVIDIA Corporation GK210GL [Tesla K80] (rev a1)\n"
)
LSPCI_NO_GPU = "00:00.0 Host bridge: Intel Corporation 440FX - 82441FX PMC [Natoma] (rev 02)\n"
GRUB_CFG = (
    "menuentry \"local image A\" {\n"
    "  linux /syslinux/vmlinuz.A init=/usr/lib/systemd/systemd boot=local rootwait ro "
    "noresume noswap loglevel=7 noinitrd console=ttyS0 cros_efi root=/dev/dm-0\n"
    "}\n"
)
CMDLINE_LOCKED = "BOOT_IMAGE=/syslinux/vmlinuz.A init=/usr/lib/systemd/systemd cros_efi root=/dev/dm-0\n"
CMDLINE_UNLOCKED = ("BOOT_IMAGE=/syslinux/vmlinuz.A init=/usr/lib/systemd/systemd cros_efi "
                    "lsm.module_locking=0 root=/dev/dm-0\n")


def _write(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def populate_upper_layer(config: InstallerConfig, version: str = "375.51") -> None:
    """Lay out what the NVIDIA installer leaves in the /usr overlay."""
    usr = Path(config.usr_writable_dir)
    libdir = usr / "lib/x86_64-linux-gnu"
    (libdir / "vdpau").mkdir(parents=True, exist_ok=True)
    (libdir / f"libcuda.so.{version}").write_bytes(b"\x7fELF cuda")
    (libdir / "vdpau" / f"libvdpau_nvidia.so.{version}").write_bytes(b"\x7fELF vdpau")
    link = libdir / "libcuda.so.1"
    if link.is_symlink():
        link.unlink()
    link.symlink_to(f"libcuda.so.{version}")
    bindir = usr / "bin"
    bindir.mkdir(parents=True, exist_ok=True)
    smi = bindir / "nvidia-smi"
    smi.write_text(f"#!/bin/sh\necho {version}\n")
    os.chmod(smi, 0o700)
    for f in (libdir / f"libcuda.so.{version}", libdir / "vdpau" / f"libvdpau_nvidia.so.{version}"):
        os.chmod(f, 0o600)


@pytest.fixture
def host(tmp_path: Path) -> InstallerConfig:
    """A fake COS host laid out under tmp_path, LoadPin already disabled."""
    _write(tmp_path / "rootfs/etc/os-release",
           'NAME="Container-Optimized OS"\nID=cos\nVERSION_ID=65\n'
           "KERNEL_COMMIT_ID=0b5e3a2c8f1d\n")
    _write(tmp_path / "proc/cmdline", CMDLINE_UNLOCKED)
    _write(tmp_path / "proc/mounts", "proc /proc proc rw,nosuid,nodev,noexec,relatime 0 0\n")
    with gzip.open(tmp_path / "proc/config.gz", "wb") as f:
        f.write(b"CONFIG_MODULES=y\nCONFIG_LOCALVERSION=\"-cos\"\n")
    _write(tmp_path / "sysrq")
    _write(tmp_path / "esp/efi/boot/grub.cfg", GRUB_CFG)
    for d in ("lakitu-kernel", "usr", "lib"):
        (tmp_path / d).mkdir()

    return InstallerConfig(
        base_dir=str(tmp_path / "rootfs/nvidia"),
        driver=DriverPackageSpec(
            version="375.51",
            url="https://example.invalid/NVIDIA-Linux-x86_64-375.51.run",
            md5sum=hashlib.md5(DRIVER_PAYLOAD).hexdigest(),
            pkg_name="NVIDIA-Linux-x86_64-375.51.run",
        ),
        kernel_src_dir=str(tmp_path / "lakitu-kernel"),
        driver_dir=str(tmp_path / "nvidia"),
        host_os_release=str(tmp_path / "rootfs/etc/os-release"),
        proc_cmdline=str(tmp_path / "proc/cmdline"),
        proc_config=str(tmp_path / "proc/config.gz"),
        proc_mounts=str(tmp_path / "proc/mounts"),
        sysrq_trigger=str(tmp_path / "sysrq"),
        esp_partition="/dev/sda12",
        esp_mount_path=str(tmp_path / "esp"),
        usr_dir=str(tmp_path / "usr"),
        lib_dir=str(tmp_path / "lib"),
    )


class FakeCommands:
    """Scripted stand-in for subprocess.run behind run_command.

    Handlers are keyed by an argv prefix; the longest matching prefix wins.
    A handler is either a return code or a callable taking (argv, cwd) and
    returning a return code or a (returncode, stdout) pair.
    """

    def __init__(self, config: InstallerConfig):
        self.config = config
        self.calls: list[tuple[list[str], str | None]] = []
        self.handlers: dict[tuple[str, ...], object] = {
            ("lspci",): lambda argv, cwd: (0, LSPCI_WITH_GPU),
            ("mount",): self._mount,
        }

    def on(self, *prefix, result=0):
        self.handlers[tuple(prefix)] = result

    def ran(self, *prefix) -> list[list[str]]:
        return [argv for argv, _ in self.calls if tuple(argv[:len(prefix)]) == prefix]

    def _mount(self, argv, cwd):
        if argv[1:3] == ["-t", "overlay"]:
            options, target = argv[4], argv[6]
            with open(self.config.proc_mounts, "a") as f:
                f.write(f"none {target} overlay rw,relatime,{options} 0 0\n")
        return 0

    def __call__(self, cmd, check=False, cwd=None, capture_output=False, text=False, stdin=None):
        argv = list(cmd)
        self.calls.append((argv, cwd))
        handler = 0
        best = -1
        for prefix, candidate in self.handlers.items():
            if tuple(argv[:len(prefix)]) == prefix and len(prefix) > best:
                handler, best = candidate, len(prefix)

        result = handler(argv, cwd) if callable(handler) else handler
        returncode, stdout = result if isinstance(result, tuple) else (result, "")
        if check and returncode != 0:
            raise subprocess.CalledProcessError(returncode, argv, output=stdout)
        return subprocess.CompletedProcess(argv, returncode,
                                           stdout=stdout if capture_output else None,
                                           stderr="" if capture_output else None)


@pytest.fixture
def commands(host, monkeypatch) -> FakeCommands:
    fake = FakeCommands(host)
    monkeypatch.setattr(system_utils.subprocess, "run", fake)
    return fake


class FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


@pytest.fixture
def downloads(monkeypatch):
    """Serve DRIVER_PAYLOAD (or whatever is assigned to .payload) from urlopen."""

    class Server:
        payload = DRIVER_PAYLOAD
        requests: list[str] = []

        def urlopen(self, req, timeout=None):
            self.requests.append(req.full_url)
            return FakeResponse(self.payload)

    server = Server()
    server.requests = []
    from cos_gpu_installer.nvidia import drivers
    monkeypatch.setattr(drivers.urllib.request, "urlopen", server.urlopen)
    return server
