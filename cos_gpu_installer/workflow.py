"""Installation state machine.

Each step of the install is a named state whose handler returns the next
state. Nothing is checkpointed: a run that is killed or rebooted starts
again at VERIFY_PLATFORM and every handler re-derives what is left to do
from the host (mount table, kernel command line, nvidia-smi).

    VERIFY_PLATFORM -> PROBE_DEVICE -> RESOLVE_KERNEL -> MOUNT_OVERLAYS
        -> UNLOCK_LOADPIN -> CHECK_INSTALLED -> PREPARE_KERNEL_SOURCE
        -> INSTALL_DRIVER -> VERIFY_INSTALL -> PUBLISH_ARTIFACTS
        -> NOTIFY_KUBELET

PROBE_DEVICE ends the run when there is no GPU, UNLOCK_LOADPIN ends it when
a reboot was triggered, and CHECK_INSTALLED jumps to PUBLISH_ARTIFACTS when
the driver is already working.
"""

from enum import Enum

from .nvidia.artifacts import post_installation_sequence
from .nvidia.drivers import driver_is_operational, download_install_nvidia, verify_installation
from .nvidia.kernel_source import FixedDelayRetry, prepare_kernel_source
from .system.checks import verify_base_image, check_nvidia_device, resolve_kernel_commit
from .system.kubelet import restart_kubelet
from .system.loadpin import unlock_loadpin_and_reboot_if_needed
from .system.mounts import setup_overlay_mounts
from .utils.logging import log_info, log_step, log_success


class State(Enum):
    VERIFY_PLATFORM = "verify_platform"
    PROBE_DEVICE = "probe_device"
    RESOLVE_KERNEL = "resolve_kernel"
    MOUNT_OVERLAYS = "mount_overlays"
    UNLOCK_LOADPIN = "unlock_loadpin"
    CHECK_INSTALLED = "check_installed"
    PREPARE_KERNEL_SOURCE = "prepare_kernel_source"
    INSTALL_DRIVER = "install_driver"
    VERIFY_INSTALL = "verify_install"
    PUBLISH_ARTIFACTS = "publish_artifacts"
    NOTIFY_KUBELET = "notify_kubelet"
    DONE = "done"


class Outcome(Enum):
    NO_DEVICE = "no_device"
    REBOOTING = "rebooting"
    ALREADY_INSTALLED = "already_installed"
    INSTALLED = "installed"


_STEP_TITLES: dict[State, str] = {
    State.VERIFY_PLATFORM: "Verifying base image",
    State.PROBE_DEVICE: "Looking for NVIDIA devices",
    State.RESOLVE_KERNEL: "Identifying kernel commit",
    State.MOUNT_OVERLAYS: "Setting up overlay mounts",
    State.UNLOCK_LOADPIN: "Checking LoadPin",
    State.CHECK_INSTALLED: "Checking for an existing driver",
    State.PREPARE_KERNEL_SOURCE: "Preparing kernel source",
    State.INSTALL_DRIVER: "Installing NVIDIA driver",
    State.VERIFY_INSTALL: "Verifying NVIDIA driver",
    State.PUBLISH_ARTIFACTS: "Running post installation sequence",
    State.NOTIFY_KUBELET: "Notifying kubelet",
}


class Workflow:
    """One installer run against the host described by ``config``.

    Args:
        config: InstallerConfig for this run.
        fetch_retry: Retry policy for fetching kernel sources. Defaults to
            retrying forever every 5 seconds.
    """

    def __init__(self, config, fetch_retry=None):
        self.config = config
        self.fetch_retry = fetch_retry or FixedDelayRetry()
        self.kernel_commit: str | None = None
        self.outcome: Outcome | None = None
        self.visited: list[State] = []
        self._handlers = {
            State.VERIFY_PLATFORM: self._verify_platform,
            State.PROBE_DEVICE: self._probe_device,
            State.RESOLVE_KERNEL: self._resolve_kernel,
            State.MOUNT_OVERLAYS: self._mount_overlays,
            State.UNLOCK_LOADPIN: self._unlock_loadpin,
            State.CHECK_INSTALLED: self._check_installed,
            State.PREPARE_KERNEL_SOURCE: self._prepare_kernel_source,
            State.INSTALL_DRIVER: self._install_driver,
            State.VERIFY_INSTALL: self._verify_install,
            State.PUBLISH_ARTIFACTS: self._publish_artifacts,
            State.NOTIFY_KUBELET: self._notify_kubelet,
        }

    def run(self) -> Outcome:
        """Drive the state machine to a terminal state.

        Fatal conditions propagate as InstallerError subclasses.
        """
        state = State.VERIFY_PLATFORM
        while state is not State.DONE:
            self.visited.append(state)
            log_step(_STEP_TITLES[state])
            state = self._handlers[state]()
        return self.outcome

    def _finish(self, outcome) -> State:
        self.outcome = outcome
        return State.DONE

    def _verify_platform(self) -> State:
        verify_base_image(self.config)
        return State.PROBE_DEVICE

    def _probe_device(self) -> State:
        if not check_nvidia_device():
            return self._finish(Outcome.NO_DEVICE)
        return State.RESOLVE_KERNEL

    def _resolve_kernel(self) -> State:
        self.kernel_commit = resolve_kernel_commit(self.config)
        return State.MOUNT_OVERLAYS

    def _mount_overlays(self) -> State:
        setup_overlay_mounts(self.config)
        return State.UNLOCK_LOADPIN

    def _unlock_loadpin(self) -> State:
        if unlock_loadpin_and_reboot_if_needed(self.config):
            return self._finish(Outcome.REBOOTING)
        return State.CHECK_INSTALLED

    def _check_installed(self) -> State:
        if driver_is_operational():
            log_info("nvidia drivers already installed. Skipping installation")
            self.outcome = Outcome.ALREADY_INSTALLED
            return State.PUBLISH_ARTIFACTS
        return State.PREPARE_KERNEL_SOURCE

    def _prepare_kernel_source(self) -> State:
        prepare_kernel_source(self.config, self.kernel_commit, retry=self.fetch_retry)
        return State.INSTALL_DRIVER

    def _install_driver(self) -> State:
        download_install_nvidia(self.config)
        return State.VERIFY_INSTALL

    def _verify_install(self) -> State:
        verify_installation()
        self.outcome = Outcome.INSTALLED
        return State.PUBLISH_ARTIFACTS

    def _publish_artifacts(self) -> State:
        post_installation_sequence(self.config)
        return State.NOTIFY_KUBELET

    def _notify_kubelet(self) -> State:
        # Restart the kubelet for it to pick up the GPU devices.
        restart_kubelet(self.config)
        log_success(f"Installer finished: {self.outcome.value}")
        return State.DONE
