"""
Exception types raised by the installer pipeline.

Probe misses are not errors: ``VersionProber`` reports them as values and
discovery folds them into its miss counter.
"""


class PatchManagerError(Exception):
    """Base class for every failure surfaced to callers."""


class TransferError(PatchManagerError):
    """Network failure or unusable response while downloading."""


class SizeMismatchError(TransferError):
    """Downloaded file size differs from the size announced by the server."""

    def __init__(self, path: str, expected: int, actual: int):
        super().__init__(
            f"Size mismatch for {path}: expected {expected} bytes, got {actual}"
        )
        self.path = path
        self.expected = expected
        self.actual = actual


class ExternalToolError(PatchManagerError):
    """The external patcher could not be provisioned, launched, or failed."""

    def __init__(self, message: str, returncode=None):
        super().__init__(message)
        self.returncode = returncode


class PatcherTimeoutError(ExternalToolError):
    """The external patcher exceeded its wall-clock budget and was killed."""


class FileSystemError(PatchManagerError):
    """Missing client binary or unwritable install location."""
