"""Error taxonomy for gitvcs synchronization operations."""

import logging
from enum import Enum
from typing import Optional, List, Tuple

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError


class ErrorCategory(Enum):
    """Categories of errors for structured error handling."""
    CONFIGURATION = "configuration"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    CONFLICT = "conflict"
    FILE_IO = "file_io"
    VCS = "vcs"


class VcsException(Exception):
    """Base class for every failure reported by the synchronization engine."""

    category = ErrorCategory.VCS

    def __init__(self, message: str, operation: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.cause = cause

    def to_dict(self) -> dict:
        """Convert the error to a dictionary for structured logging."""
        result = {
            "error": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.operation:
            result["operation"] = self.operation
        return result


class ConfigurationError(VcsException):
    """Required settings are missing or contradictory."""
    category = ErrorCategory.CONFIGURATION


class RemoteUnavailable(VcsException):
    """The remote repository or the shadow clone could not be reached."""
    category = ErrorCategory.REMOTE_UNAVAILABLE


class VcsConflict(VcsException):
    """A checkout collided with local changes or a push was rejected."""
    category = ErrorCategory.CONFLICT


class IOFailure(VcsException):
    """The working copy or cache directory could not be created or read."""
    category = ErrorCategory.FILE_IO


class RollbackFailed(VcsConflict):
    """
    The compensating reset after a rejected push failed as well.

    The working copy is left as-is for manual intervention. Both the error that
    triggered the rollback and the rollback error are kept.
    """

    def __init__(self, original: VcsException, rollback_error: BaseException, operation: Optional[str] = None):
        super().__init__(
            f"{original.message}; rollback of the local commit also failed: {rollback_error}",
            operation=operation,
            cause=rollback_error,
        )
        self.original = original
        self.rollback_error = rollback_error


# Ordered: first matching pattern wins.
_ERROR_PATTERNS: List[Tuple[str, type]] = [
    # Conflicts
    ("would be overwritten by", VcsConflict),
    ("checkout conflict", VcsConflict),
    ("automatic merge failed", VcsConflict),
    ("merge conflict", VcsConflict),
    ("unmerged paths", VcsConflict),
    ("not possible because you have unmerged files", VcsConflict),
    ("non-fast-forward", VcsConflict),
    ("[rejected]", VcsConflict),
    ("conflict", VcsConflict),

    # Network and authentication
    ("could not read from remote repository", RemoteUnavailable),
    ("repository not found", RemoteUnavailable),
    ("does not appear to be a git repository", RemoteUnavailable),
    ("could not resolve host", RemoteUnavailable),
    ("connection refused", RemoteUnavailable),
    ("connection timed out", RemoteUnavailable),
    ("network is unreachable", RemoteUnavailable),
    ("no route to host", RemoteUnavailable),
    ("authentication failed", RemoteUnavailable),
    ("permission denied (publickey", RemoteUnavailable),
    ("unable to access", RemoteUnavailable),

    # Local filesystem
    ("already exists and is not an empty directory", IOFailure),
    ("permission denied", IOFailure),
    ("no space left on device", IOFailure),
]


def _error_text(error: BaseException) -> str:
    if isinstance(error, GitCommandError):
        return f"{error.stderr or ''} {error.stdout or ''} {error}".lower()
    return str(error).lower()


def categorize_error(error: BaseException) -> Optional[type]:
    """Return the exception class whose pattern matches the error text, if any."""
    text = _error_text(error)
    for pattern, error_class in _ERROR_PATTERNS:
        if pattern in text:
            return error_class
    return None


def translate_git_error(error: BaseException, operation: str, network: bool = False) -> VcsException:
    """
    Promote a GitPython or OS error into the gitvcs taxonomy.

    Args:
        error: The error raised by GitPython or the filesystem
        operation: Name of the operation that failed
        network: Whether the failed operation talked to a remote; unmatched
            failures of network operations become RemoteUnavailable

    Returns:
        A VcsException subclass instance with ``error`` as its cause
    """
    if isinstance(error, VcsException):
        return error

    if isinstance(error, (InvalidGitRepositoryError, NoSuchPathError)):
        error_class = IOFailure
        message = f"{operation} failed: not a usable git repository: {error}"
    else:
        error_class = categorize_error(error)
        if error_class is None:
            if isinstance(error, OSError):
                error_class = IOFailure
            elif network:
                error_class = RemoteUnavailable
            else:
                error_class = VcsException
        detail = error.stderr.strip() if isinstance(error, GitCommandError) and error.stderr else str(error)
        message = f"{operation} failed: {detail}"

    translated = error_class(message, operation=operation, cause=error)
    logging.getLogger('gitvcs.errors').debug(
        f"Translated {type(error).__name__} into {error_class.__name__} for {operation}"
    )
    return translated
