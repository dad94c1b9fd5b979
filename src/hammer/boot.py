"""
Hammer Boot Selector

Makes a snapshot the next-boot default and points the current symlink
at it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from common.exceptions import BackingStoreError, PointerUpdateError
from utils.atomic_write import atomic_symlink

from .runner import CommandRunner
from .snapshot import SnapshotStore

logger = logging.getLogger(__name__)


class BootSelector:
    """
    Owns the two pieces of boot state: the btrfs default subvolume and
    the userland current pointer.
    """

    def __init__(
        self,
        store: SnapshotStore,
        runner: Optional[CommandRunner] = None,
        volume_root: str = "/",
    ):
        self.store = store
        self.runner = runner or store.runner
        self.volume_root = volume_root

    @property
    def current_pointer(self) -> Path:
        return self.store.current_pointer

    def current(self) -> Optional[Path]:
        """Snapshot the current pointer resolves to, if any."""
        return self.store.current_target()

    def volume_is_btrfs(self) -> bool:
        """True if the volume holding the boot default is a btrfs filesystem."""
        result = self.runner.run(["btrfs", "filesystem", "show", self.volume_root])
        if not result.success:
            logger.debug(f"btrfs filesystem show {self.volume_root}: {result.stderr.strip()}")
        return result.success

    def default_id(self) -> Optional[str]:
        """Subvolume id the next boot will mount, or None if unknown."""
        result = self.runner.run(["btrfs", "subvolume", "get-default", self.volume_root])
        if not result.success:
            logger.debug(f"get-default failed: {result.stderr.strip()}")
            return None
        # Output: "ID 257 gen 12 top level 5 path deployments/hammer-..."
        parts = result.stdout.split()
        if len(parts) >= 2 and parts[0] == "ID":
            return parts[1]
        return None

    def set_default(self, snapshot_path: Union[str, Path]) -> str:
        subvol_id = self.store.resolve_id(snapshot_path)
        result = self.runner.run(
            ["btrfs", "subvolume", "set-default", subvol_id, self.volume_root]
        )
        if not result.success:
            raise BackingStoreError("subvolume set-default", str(snapshot_path), result.stderr)
        logger.info(f"Next boot default is now subvolume {subvol_id} ({snapshot_path})")
        return subvol_id

    def update_pointer(self, snapshot_path: Union[str, Path]) -> None:
        try:
            atomic_symlink(snapshot_path, self.current_pointer)
        except OSError as e:
            raise PointerUpdateError(str(self.current_pointer), str(snapshot_path), e) from e
        logger.info(f"{self.current_pointer} -> {snapshot_path}")

    def promote(self, snapshot_path: Union[str, Path]) -> str:
        """
        Make ``snapshot_path`` the next-boot root.

        The default subvolume is changed first; that is the commit point.
        If the pointer update then fails, PointerUpdateError is raised but
        the new default stays in place.

        Returns:
            The subvolume id now set as default.
        """
        subvol_id = self.set_default(snapshot_path)
        try:
            self.update_pointer(snapshot_path)
        except PointerUpdateError as e:
            e.details["subvol_id"] = subvol_id
            raise
        return subvol_id
