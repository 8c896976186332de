"""
Custom exception hierarchy for the library reconciliation engine.

Per-file errors (hashing, resolution, commit) are collected into the
ReconciliationResult; only InvalidRootError aborts a run.
"""


class PelicoError(Exception):
    """Base exception for all Pelico errors."""
    pass


class FileHashError(PelicoError, OSError):
    """Raised when a file cannot be opened or read while hashing."""

    def __init__(self, path, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class InvalidRootError(PelicoError):
    """Raised when a scan root is missing or is not a directory."""

    def __init__(self, root, message: str = "scan root is missing or not a directory"):
        self.root = root
        super().__init__(f"{root}: {message}")


class ResolutionError(PelicoError):
    """Raised when the metadata catalog is unreachable, times out or returns malformed data."""
    pass


class CatalogConfigurationError(PelicoError):
    """Raised when the metadata catalog cannot be used (missing credentials)."""
    pass


class PersistenceError(PelicoError):
    """
    Raised when a single store operation fails.
    `transient` marks failures worth retrying (locked database, busy handle).
    """

    def __init__(self, message: str, transient: bool = False):
        self.transient = transient
        super().__init__(message)


class ScanInProgressError(PelicoError):
    """Raised when a scan (or an exclusive section) is requested while another is running."""
    pass
