"""NVIDIA driver download, installation and status"""

import hashlib
import http.client
import os
import shutil
import subprocess
import urllib.request

from ..errors import ChecksumMismatch, DownloadError, DriverBuildError, VerificationError
from ..utils.logging import log_info, log_error, log_step, log_success
from ..utils.system import run_command, tail_file

_DOWNLOAD_TIMEOUT = 60
_LOG_TAIL_LINES = 50


def driver_is_operational() -> bool:
    """Return True when nvidia-smi can talk to a loaded driver."""
    try:
        return run_command(["nvidia-smi"], check=False).returncode == 0
    except OSError:
        # nvidia-smi is not on PATH until the driver has been installed
        return False


def verify_installation() -> None:
    """Confirm the freshly installed driver actually works.

    Raises:
        VerificationError: if nvidia-smi fails after a successful install.
    """
    if not driver_is_operational():
        raise VerificationError("NVIDIA installer reported success but nvidia-smi fails")
    log_success("NVIDIA driver installed and operational")


def file_md5(path) -> str:
    digest = hashlib.md5()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_checksum(path, expected) -> None:
    """Raise ChecksumMismatch unless ``path`` hashes to ``expected``."""
    actual = file_md5(path)
    if actual != expected.lower():
        raise ChecksumMismatch(path, expected, actual)
    log_info(f"{os.path.basename(path)}: checksum OK")


def _download(url, dest) -> None:
    log_info(f"Downloading NVIDIA driver from {url} ...")
    partial = f"{dest}.part"
    try:
        req = urllib.request.Request(url, headers={"User-Agent": "cos-gpu-installer/1.0"})
        with urllib.request.urlopen(req, timeout=_DOWNLOAD_TIMEOUT) as resp, open(partial, 'wb') as out:
            shutil.copyfileobj(resp, out)
        os.replace(partial, dest)
    except (OSError, http.client.HTTPException, ValueError) as e:
        if os.path.exists(partial):
            os.remove(partial)
        raise DownloadError(f"Failed to download {url}: {e}") from e


def fetch_driver_package(config) -> str:
    """Download the pinned driver package and verify its checksum.

    A package left by an earlier run is reused when its checksum matches.

    Returns:
        Path of the verified package.
    """
    spec = config.driver
    os.makedirs(config.driver_dir, exist_ok=True)
    pkg_path = os.path.join(config.driver_dir, spec.pkg_name)

    if os.path.isfile(pkg_path) and file_md5(pkg_path) == spec.md5sum.lower():
        log_info(f"Reusing previously downloaded {spec.pkg_name}")
        return pkg_path

    _download(spec.url, pkg_path)
    verify_checksum(pkg_path, spec.md5sum)
    return pkg_path


def run_nvidia_installer(config, pkg_path) -> None:
    """Run the vendor installer against the prepared kernel source.

    Raises:
        DriverBuildError: if the installer exits non-zero. The tail of its
            log is printed and attached to the exception.
    """
    log_file = config.installer_log
    cmd = [
        "sh", pkg_path,
        f"--kernel-source-path={config.kernel_src_dir}",
        "--silent",
        "--accept-license",
        "--keep",
        f"--log-file-name={log_file}",
    ]
    log_info("Running the Nvidia driver installer ...")
    try:
        run_command(cmd, cwd=config.driver_dir)
    except (OSError, subprocess.CalledProcessError) as e:
        tail = tail_file(log_file, _LOG_TAIL_LINES)
        log_error("Nvidia installer failed, log below:")
        log_error("===================================")
        for line in tail:
            print(line, flush=True)
        log_error("===================================")
        raise DriverBuildError(f"NVIDIA installer failed: {e}", log_tail=tail) from e


def download_install_nvidia(config) -> None:
    """Download, verify, compile and install the NVIDIA driver."""
    log_step(f"Installing NVIDIA driver {config.driver.version}")
    pkg_path = fetch_driver_package(config)
    run_nvidia_installer(config, pkg_path)
