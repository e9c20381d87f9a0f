"""Kernel source preparation for building the NVIDIA module"""

import gzip
import os
import shutil
import subprocess
import time

from ..errors import KernelSourceError, RetryExhausted
from ..utils.logging import log_info, log_warn, log_step
from ..utils.system import run_command, command_succeeds


class FixedDelayRetry:
    """Retry an operation with a constant delay between attempts.

    ``attempts=None`` retries forever; the pod's restart policy is the only
    upper bound in that case.
    """

    def __init__(self, delay=5.0, attempts=None, sleep=time.sleep):
        self.delay = delay
        self.attempts = attempts
        self.sleep = sleep

    def run(self, operation, description="operation") -> None:
        """Call ``operation`` until it returns True."""
        attempt = 0
        while True:
            attempt += 1
            if operation():
                return
            if self.attempts is not None and attempt >= self.attempts:
                raise RetryExhausted(f"{description} failed after {attempt} attempt(s)")
            log_warn(f"{description} failed. Retrying after {self.delay:g} seconds")
            self.sleep(self.delay)


def _checkout(kernel_src_dir, commit) -> bool:
    return command_succeeds(["git", "checkout", commit], cwd=kernel_src_dir)


def _write_kernel_config(proc_config, kernel_src_dir) -> None:
    """Recreate .config from the running kernel's compiled-in config."""
    with gzip.open(proc_config, 'rb') as src, \
            open(os.path.join(kernel_src_dir, ".config"), 'wb') as dst:
        shutil.copyfileobj(src, dst)


def prepare_kernel_source(config, commit, retry=None) -> None:
    """Check out ``commit`` in the local kernel tree and prepare it for modules.

    Fetching from origin is retried according to ``retry``; everything else
    fails fast.

    Raises:
        KernelSourceError: if checkout or preparation fails.
    """
    retry = retry or FixedDelayRetry()
    src = config.kernel_src_dir
    log_step(f"Checking out kernel source {commit}")

    if not _checkout(src, commit):
        log_info(f"Commit {commit} not available locally; fetching origin")
        retry.run(lambda: command_succeeds(["git", "fetch", "origin"], cwd=src),
                  description="Fetching origin for Lakitu kernel source git repo")
        if not _checkout(src, commit):
            raise KernelSourceError(f"Could not check out kernel commit {commit} after fetching origin")

    log_info("Preparing kernel sources ...")
    try:
        _write_kernel_config(config.proc_config, src)
    except OSError as e:
        raise KernelSourceError(f"Could not read kernel config from {config.proc_config}: {e}") from e

    for target in ("olddefconfig", "modules_prepare"):
        try:
            run_command(["make", target], cwd=src)
        except (OSError, subprocess.CalledProcessError) as e:
            raise KernelSourceError(f"make {target} failed in {src}: {e}") from e
    log_info("Kernel sources prepared")
