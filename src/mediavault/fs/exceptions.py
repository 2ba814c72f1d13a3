"""Custom exception hierarchy for the mediavault engine.

Each class carries the ``status_code`` a request layer should answer with,
so callers can map failures without inspecting messages.
"""


class MediaVaultError(Exception):
    """Base exception for all mediavault errors."""

    status_code: int = 500


class AuthenticationRequiredError(MediaVaultError):
    """Raised when an operation is attempted without an authenticated user."""

    status_code = 401


class AccessDeniedError(MediaVaultError, PermissionError):
    """Raised when the actor lacks ownership, role, or grant for a target."""

    status_code = 403


class AssetNotFoundError(MediaVaultError):
    """Raised when none of the requested assets exist in the index."""

    status_code = 404


class FolderNotFoundError(MediaVaultError):
    """Raised when a folder id does not exist."""

    status_code = 404


class PathNotFoundError(MediaVaultError):
    """Raised when a physical file does not exist on disk."""

    status_code = 404


class RootNotFoundError(MediaVaultError):
    """Raised when a physical path lies outside every configured root."""

    status_code = 403


class InvalidArgumentError(MediaVaultError, ValueError):
    """Raised on empty id lists, blank paths, or a disallowed state transition."""

    status_code = 400


class StorageError(MediaVaultError):
    """Raised on disk I/O failures (move, copy, hash)."""


class ConsistencyError(MediaVaultError):
    """Raised when the index could not be committed after a physical change."""
