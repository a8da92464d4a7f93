"""
gitvcs - Git working copy synchronization for application bootstrap.

Checks out or updates a local working copy from a remote Git repository
through a shadow clone kept beside it, and pushes local edits back upstream.
"""

__version__ = "1.0.0"
__description__ = "Git working copy synchronization for application bootstrap"

from .bootstrap import RuntimeVersionControl, main
from .config import Config, load_configuration, validate_configuration
from .engine import SynchronizationEngine, WorkingCopyState
from .errors import (
    ConfigurationError,
    IOFailure,
    RemoteUnavailable,
    RollbackFailed,
    VcsConflict,
    VcsException,
)
from .revision import RevisionHistoryItem

__all__ = [
    "Config",
    "ConfigurationError",
    "IOFailure",
    "RemoteUnavailable",
    "RevisionHistoryItem",
    "RollbackFailed",
    "RuntimeVersionControl",
    "SynchronizationEngine",
    "VcsConflict",
    "VcsException",
    "WorkingCopyState",
    "load_configuration",
    "main",
    "validate_configuration",
]
