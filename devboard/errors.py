"""
Exception hierarchy.

Storage errors are raised by the backends and caught at the ProjectStore
boundary (logged, never fatal), except ImportParseError which reaches the
caller. Capture errors always propagate to whoever asked for the capture.
"""
from typing import Optional


class DevboardError(Exception):
    """Base class for all devboard errors."""
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Storage
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class NotFoundError(DevboardError):
    """A project or group id does not exist."""
    pass


class StorageError(DevboardError):
    pass


class StorageReadError(StorageError):
    """Persisted data is missing, unreadable or structurally invalid."""
    pass


class StorageWriteError(StorageError):
    """A backend write (file or sync slot) failed."""
    pass


class ImportParseError(StorageError):
    """An import source could not be read or parsed. Canonical state is untouched."""
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Capture
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CaptureError(DevboardError):
    pass


class BrowserNotFoundError(CaptureError):
    """No browser binary could be located."""

    def __init__(self, message: str = "No browser available for screenshots"):
        super().__init__(message)


class NoBrowserSelectedError(BrowserNotFoundError):
    """The user was asked to pick a browser binary and picked nothing."""

    def __init__(self, message: str = "No browser selected for screenshots"):
        super().__init__(message)


class InvalidWindowSizeError(CaptureError, ValueError):
    pass


class CaptureTimeoutError(CaptureError):
    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Screenshot timed out after {timeout_ms} ms")


class CaptureProcessError(CaptureError):
    """
    The browser process failed: non-zero exit, missing output file, or
    it could not be spawned at all (exit_code is None).
    """

    def __init__(self, message: str, exit_code: Optional[int] = None):
        self.exit_code = exit_code
        super().__init__(message)
