"""Exceptions raised by the installer.

Anything derived from InstallerError is fatal: the CLI logs it and exits
non-zero. Transient conditions are retried where they occur and never
surface here.
"""


class InstallerError(Exception):
    """Base class for fatal installer failures."""


class PreconditionError(InstallerError):
    """The host is not in a state the installer can work with."""


class PlatformError(PreconditionError):
    pass


class KernelVersionError(PreconditionError):
    pass


class MountError(PreconditionError):
    pass


class BootConfigError(PreconditionError):
    pass


class KernelSourceError(InstallerError):
    pass


class DownloadError(InstallerError):
    pass


class IntegrityError(InstallerError):
    pass


class ChecksumMismatch(IntegrityError):
    def __init__(self, path, expected, actual):
        super().__init__(f"Checksum mismatch for {path}: expected {expected}, got {actual}")
        self.path = path
        self.expected = expected
        self.actual = actual


class DriverBuildError(InstallerError):
    def __init__(self, message, log_tail=()):
        super().__init__(message)
        self.log_tail = list(log_tail)


class VerificationError(InstallerError):
    pass


class PublishError(InstallerError):
    pass


class RetryExhausted(Exception):
    """A bounded retry policy ran out of attempts."""
