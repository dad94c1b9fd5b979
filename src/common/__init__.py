"""
Hammer Common Utilities

Shared exception hierarchy, logging setup and decorators.
"""

from .exceptions import (
    HammerError, SnapshotError, BackingStoreError, AlreadyExistsError,
    NotFoundError, NameCollisionError, InsufficientHistoryError,
    SnapshotInUseError, ChrootError, MountFailedError, BodyFailedError,
    TeardownFailedError, ContainerError, ContainerCreateFailedError,
    UpdateFailedError, PackageOpFailedError, PruneFailedError,
    PointerUpdateError, LockError, SystemValidationError, InvalidNameError,
    RootRequiredError, ConfigError, InvalidConfigError,
)
from .decorators import require_root, timed
from .logging_config import setup_logging, LogContext

__all__ = [
    # Exceptions
    "HammerError", "SnapshotError", "BackingStoreError", "AlreadyExistsError",
    "NotFoundError", "NameCollisionError", "InsufficientHistoryError",
    "SnapshotInUseError", "ChrootError", "MountFailedError", "BodyFailedError",
    "TeardownFailedError", "ContainerError", "ContainerCreateFailedError",
    "UpdateFailedError", "PackageOpFailedError", "PruneFailedError",
    "PointerUpdateError", "LockError", "SystemValidationError", "InvalidNameError",
    "RootRequiredError", "ConfigError", "InvalidConfigError",
    # Decorators
    "require_root", "timed",
    # Logging
    "setup_logging", "LogContext",
]
