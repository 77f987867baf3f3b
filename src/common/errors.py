"""Error taxonomy for rpmsync.

Per-package failures are carried as values inside result objects and end
up in the reconciliation report; only structural problems are raised.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all rpmsync errors."""


class MalformedArtifactName(SyncError):
    """Raised when a filename cannot be decomposed into an RPM identity."""

    def __init__(self, filename: str):
        super().__init__(f"Malformed artifact name: {filename}")
        self.filename = filename


class NothingToReconcile(SyncError):
    """Raised when a target directory holds no manifest, artifacts or repos."""


class InvalidArtifact(SyncError):
    """A downloaded file failed validation."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"RPM '{path}' is invalid: {reason}")
        self.path = path
        self.reason = reason


class FetchError(SyncError):
    """A locator could not be fetched."""

    def __init__(self, message: str, locator: Optional[str] = None):
        super().__init__(message)
        self.locator = locator


class NotFound(SyncError):
    """No upstream source is known for a package name."""

    def __init__(self, name: str):
        super().__init__(f"No source found for {name}")
        self.name = name


class PersistenceError(SyncError):
    """A manifest could not be read or written."""
