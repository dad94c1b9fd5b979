"""
Hammer - package manager for HackerOS Atomic

Two ways to change a host:
- Container installs into a long-lived Debian sandbox, with binaries
  exported to the user's PATH
- Atomic installs into a new btrfs root snapshot that becomes the
  default for the next boot, with rollback to earlier deployments
"""

from .snapshot import (
    SnapshotStore,
    Snapshot,
)
from .chroot import ChrootHarness
from .boot import BootSelector
from .container import ContainerSandbox
from .config import HammerConfig
from .deployment import (
    DeploymentEngine,
    DeploymentResult,
    DeploymentStatus,
    CleanReport,
    SystemStatus,
)
from .runner import CommandRunner, CommandResult

__all__ = [
    "SnapshotStore",
    "Snapshot",
    "ChrootHarness",
    "BootSelector",
    "ContainerSandbox",
    "HammerConfig",
    "DeploymentEngine",
    "DeploymentResult",
    "DeploymentStatus",
    "CleanReport",
    "SystemStatus",
    "CommandRunner",
    "CommandResult",
]
