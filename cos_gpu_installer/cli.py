"""COS GPU Installer - Command Line Interface

Entry point for the cos-gpu-installer command and python3 -m cos_gpu_installer.
Configuration comes from the environment only; see cos_gpu_installer.config.
"""

import sys
import traceback

from cos_gpu_installer import __version__
from cos_gpu_installer.config import InstallerConfig
from cos_gpu_installer.errors import InstallerError
from cos_gpu_installer.system.loadpin import wait_for_reboot
from cos_gpu_installer.utils.logging import log_error, log_info
from cos_gpu_installer.workflow import Workflow, Outcome


def run(config, fetch_retry=None) -> int:
    """Run the installer once and return the process exit code."""
    log_info(f"cos-gpu-installer {__version__}")
    log_info(f"Base directory: {config.base_dir}")
    try:
        outcome = Workflow(config, fetch_retry=fetch_retry).run()
    except InstallerError as e:
        log_error(str(e))
        return 1
    except Exception as e:
        log_error(f"Installation failed: {str(e)}")
        log_error(f"Traceback: {traceback.format_exc()}")
        return 1

    if outcome is Outcome.REBOOTING:
        wait_for_reboot()
    return 0


def main() -> None:
    """Main entry point"""
    try:
        sys.exit(run(InstallerConfig.from_env()))
    except KeyboardInterrupt:
        print()
        log_info("Cancelled.")
        sys.exit(1)


if __name__ == "__main__":
    main()
