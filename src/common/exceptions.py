"""
Hammer Exception Hierarchy

Provides clear, actionable error messages with structured information
for logging, user feedback, and programmatic error handling.
"""

from typing import Optional, Dict, Any


class HammerError(Exception):
    """
    Base exception for all Hammer errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context as key-value pairs
        cause: Original exception that caused this error
        recoverable: Whether the error is recoverable
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable

    def __str__(self):
        s = f"[{self.code}] {self.message}"
        if self.details:
            s += f" (details: {self.details})"
        if self.cause:
            s += f" caused by: {self.cause}"
        return s

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


def _tail(stderr: str) -> str:
    return stderr.strip().splitlines()[-1] if stderr.strip() else "no error output"


# =============================================================================
# Snapshot store errors
# =============================================================================

class SnapshotError(HammerError):
    """Base for snapshot store errors."""
    pass


class BackingStoreError(SnapshotError):
    """The filesystem control tool reported a failure."""
    def __init__(self, operation: str, path: str, stderr: str = ""):
        super().__init__(
            f"btrfs {operation} failed for {path}: {_tail(stderr)}",
            code="BACKING_STORE_ERROR",
            details={"operation": operation, "path": path, "stderr": stderr},
        )


class AlreadyExistsError(SnapshotError):
    """Snapshot destination already exists."""
    def __init__(self, path: str):
        super().__init__(
            f"Snapshot destination already exists: {path}",
            code="ALREADY_EXISTS",
            details={"path": path},
            recoverable=False,
        )


class NotFoundError(SnapshotError):
    """Path is not an existing snapshot."""
    def __init__(self, path: str, reason: str = ""):
        message = f"Deployment {path} does not exist"
        if reason:
            message += f": {reason}"
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"path": path},
            recoverable=False,
        )


class NameCollisionError(SnapshotError):
    """A deployment with today's name already exists."""
    def __init__(self, name: str):
        super().__init__(
            f"Deployment '{name}' already exists; only one deployment per day is allowed",
            code="NAME_COLLISION",
            details={"name": name},
        )


class InsufficientHistoryError(SnapshotError):
    """Not enough deployments to roll back."""
    def __init__(self, available: int, required: int):
        super().__init__(
            f"Not enough deployments for rollback (have {available}, need {required})",
            code="INSUFFICIENT_HISTORY",
            details={"available": available, "required": required},
            recoverable=False,
        )


class SnapshotInUseError(SnapshotError):
    """Refused to delete the snapshot named by the current pointer."""
    def __init__(self, path: str):
        super().__init__(
            f"Refusing to delete current deployment {path}",
            code="SNAPSHOT_IN_USE",
            details={"path": path},
        )


# =============================================================================
# Chroot harness errors
# =============================================================================

class ChrootError(HammerError):
    """Base for chroot harness errors."""
    pass


class MountFailedError(ChrootError):
    """A bind mount could not be established."""
    def __init__(self, directory: str, stderr: str = ""):
        super().__init__(
            f"Failed to bind-mount /{directory}: {_tail(stderr)}",
            code="MOUNT_FAILED",
            details={"dir": directory, "stderr": stderr},
        )


class BodyFailedError(ChrootError):
    """The command run inside the chroot failed."""
    def __init__(self, cause: Exception):
        message = cause.message if isinstance(cause, HammerError) else str(cause)
        super().__init__(
            message,
            code="BODY_FAILED",
            cause=cause,
        )


class TeardownFailedError(ChrootError):
    """A bind mount could not be removed."""
    def __init__(self, directory: str, stderr: str = ""):
        super().__init__(
            f"Failed to unmount {directory}: {_tail(stderr)}",
            code="TEARDOWN_FAILED",
            details={"dir": directory, "stderr": stderr},
            recoverable=False,
        )


# =============================================================================
# Container sandbox errors
# =============================================================================

class ContainerError(HammerError):
    """Base for container sandbox errors."""
    pass


class ContainerCreateFailedError(ContainerError):
    """Failed to create the sandbox container."""
    def __init__(self, name: str, stderr: str = ""):
        super().__init__(
            f"Failed to create container '{name}': {_tail(stderr)}",
            code="CONTAINER_CREATE_FAILED",
            details={"container": name, "stderr": stderr},
        )


class UpdateFailedError(ContainerError):
    """apt update failed inside the container."""
    def __init__(self, name: str, stderr: str = ""):
        super().__init__(
            f"Failed to update package lists in '{name}': {_tail(stderr)}",
            code="UPDATE_FAILED",
            details={"container": name, "stderr": stderr},
        )


class PackageOpFailedError(HammerError):
    """A package install/remove/upgrade failed."""
    def __init__(self, operation: str, package: str, where: str, stderr: str = ""):
        target = f" {package}" if package else ""
        super().__init__(
            f"Failed to {operation}{target} in {where}: {_tail(stderr)}",
            code="PACKAGE_OP_FAILED",
            details={
                "operation": operation,
                "package": package,
                "where": where,
                "stderr": stderr,
            },
        )


class PruneFailedError(ContainerError):
    """Container engine prune failed."""
    def __init__(self, stderr: str = ""):
        super().__init__(
            f"Failed to prune containers: {_tail(stderr)}",
            code="PRUNE_FAILED",
            details={"stderr": stderr},
        )


# =============================================================================
# Boot selector errors
# =============================================================================

class PointerUpdateError(HammerError):
    """The current pointer could not be replaced."""
    def __init__(self, pointer: str, target: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Next boot uses {target}, but {pointer} could not be updated",
            code="POINTER_UPDATE_FAILED",
            details={"pointer": pointer, "target": target},
            cause=cause,
        )


# =============================================================================
# Host state errors
# =============================================================================

class LockError(HammerError):
    """Another Hammer operation holds the lock."""
    def __init__(self, lock_file: str):
        super().__init__(
            f"Hammer operation in progress (lock held on {lock_file})",
            code="LOCKED",
            details={"lock_file": lock_file},
        )


class SystemValidationError(HammerError):
    """Host is not in a state Hammer can operate on."""
    def __init__(self, reason: str):
        super().__init__(
            reason,
            code="INVALID_SYSTEM",
            recoverable=False,
        )


class InvalidNameError(HammerError):
    """Package or deployment name rejected."""
    def __init__(self, kind: str, value: str):
        super().__init__(
            f"Invalid {kind}: {value!r}",
            code="INVALID_NAME",
            details={"kind": kind, "value": value},
            recoverable=False,
        )


class RootRequiredError(HammerError):
    """Operation needs root privileges."""
    def __init__(self, operation: str):
        super().__init__(
            f"{operation} requires root privileges. Run with sudo.",
            code="ROOT_REQUIRED",
            details={"operation": operation},
        )


# =============================================================================
# Configuration errors
# =============================================================================

class ConfigError(HammerError):
    """Base for configuration errors."""
    pass


class InvalidConfigError(ConfigError):
    """Invalid configuration."""
    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            f"Invalid configuration: {field}={value}: {reason}",
            code="INVALID_CONFIG",
            details={"field": field, "value": str(value), "reason": reason},
        )
