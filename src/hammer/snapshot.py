#!/usr/bin/env python3
"""
Hammer Snapshot Store

Creates, seals, deletes and enumerates btrfs snapshots of the root
subvolume inside the deployments directory.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Union

from common.exceptions import (
    AlreadyExistsError,
    BackingStoreError,
    NotFoundError,
    SnapshotInUseError,
)

from .metadata import DeploymentMeta, read_meta
from .runner import CommandRunner

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

NAME_DATE_FORMAT = "%Y-%m-%d"


def deployment_name(prefix: str, day: date) -> str:
    """Name of the deployment created on ``day``, e.g. hammer-2025-01-15."""
    return f"{prefix}{day.strftime(NAME_DATE_FORMAT)}"


def parse_deployment_date(name: str, prefix: str) -> Optional[date]:
    if not name.startswith(prefix):
        return None
    try:
        return datetime.strptime(name[len(prefix):], NAME_DATE_FORMAT).date()
    except ValueError:
        return None


@dataclass
class Snapshot:
    """A deployment snapshot in the history."""
    name: str
    path: Path
    created: Optional[date] = None
    meta: DeploymentMeta = field(default_factory=DeploymentMeta)
    is_current: bool = False

    @property
    def age_str(self) -> str:
        """Get human-readable age."""
        if self.created is None:
            return "unknown age"
        days = (date.today() - self.created).days
        if days <= 0:
            return "Today"
        if days == 1:
            return "1 day ago"
        return f"{days} days ago"


class SnapshotStore:
    """
    Thin facade over ``btrfs subvolume`` for the deployments directory.

    Every method maps to one or two btrfs invocations and raises
    BackingStoreError with the tool's stderr when they fail.
    """

    def __init__(
        self,
        deployments_dir: PathLike,
        current_pointer: PathLike,
        runner: Optional[CommandRunner] = None,
    ):
        self.deployments_dir = Path(deployments_dir)
        self.current_pointer = Path(current_pointer)
        self.runner = runner or CommandRunner()

    def _btrfs(self, *args: str):
        return self.runner.run(["btrfs", *args])

    def current_target(self) -> Optional[Path]:
        """Snapshot path named by the current pointer, or None if unset."""
        try:
            target = Path(os.readlink(self.current_pointer))
        except OSError:
            return None
        if not target.is_absolute():
            target = self.current_pointer.parent / target
        return target

    def create(self, parent: PathLike, dest: PathLike, writable: bool) -> Path:
        """
        Snapshot ``parent`` into ``dest``.

        Args:
            parent: Source subvolume
            dest: New snapshot path (must not exist)
            writable: Leave the snapshot mutable; otherwise it is sealed
                at creation.

        Returns:
            The new snapshot path.
        """
        dest = Path(dest)
        if os.path.lexists(dest):
            raise AlreadyExistsError(str(dest))

        dest.parent.mkdir(parents=True, exist_ok=True)
        args = ["subvolume", "snapshot"]
        if not writable:
            args.append("-r")
        args += [str(parent), str(dest)]

        result = self._btrfs(*args)
        if not result.success:
            raise BackingStoreError("subvolume snapshot", str(dest), result.stderr)

        if writable:
            # A snapshot of a sealed parent may inherit ro on some kernels
            self.seal(dest, readonly=False)

        logger.info(f"Created {'writable' if writable else 'sealed'} snapshot {dest}")
        return dest

    def seal(self, path: PathLike, readonly: bool = True) -> None:
        """Set the snapshot's ro property. Idempotent."""
        value = "true" if readonly else "false"
        result = self._btrfs("property", "set", "-ts", str(path), "ro", value)
        if not result.success:
            raise BackingStoreError(f"property set ro={value}", str(path), result.stderr)
        logger.debug(f"Set ro={value} on {path}")

    def is_sealed(self, path: PathLike) -> bool:
        result = self._btrfs("property", "get", "-ts", str(path), "ro")
        if not result.success:
            raise BackingStoreError("property get ro", str(path), result.stderr)
        return result.stdout.strip() == "ro=true"

    def delete(self, path: PathLike) -> None:
        """Destroy a snapshot. Refuses the one named by the current pointer."""
        path = Path(path)
        current = self.current_target()
        if current is not None and os.path.abspath(current) == os.path.abspath(path):
            raise SnapshotInUseError(str(path))

        result = self._btrfs("subvolume", "delete", str(path))
        if not result.success:
            raise BackingStoreError("subvolume delete", str(path), result.stderr)
        logger.info(f"Deleted snapshot {path}")

    def list(self, prefix: str) -> List[Path]:
        """
        Snapshots in the deployments directory whose name starts with prefix.

        Order is unspecified; callers sort.
        """
        try:
            names = os.listdir(self.deployments_dir)
        except FileNotFoundError:
            logger.debug(f"No deployments directory at {self.deployments_dir}")
            return []
        except OSError as e:
            raise BackingStoreError("list", str(self.deployments_dir), str(e)) from e

        return [
            self.deployments_dir / name
            for name in names
            if name.startswith(prefix) and not name.startswith(".")
        ]

    def resolve_id(self, path: PathLike) -> str:
        """Subvolume id of ``path`` as reported by ``btrfs subvolume show``."""
        result = self._btrfs("subvolume", "show", str(path))
        if not result.success:
            raise NotFoundError(str(path), "not a btrfs subvolume")

        for line in result.stdout.splitlines():
            if "Subvolume ID:" in line:
                subvol_id = line.split(":", 1)[1].strip()
                if subvol_id:
                    return subvol_id
        raise NotFoundError(str(path), "subvolume ID not found")

    def get_snapshots(self, prefix: str) -> List[Snapshot]:
        """
        History entries with metadata, oldest first.

        Returns:
            List of Snapshot objects sorted by name.
        """
        current = self.current_target()
        current_abs = os.path.abspath(current) if current is not None else None

        snapshots = []
        for path in sorted(self.list(prefix)):
            snapshots.append(Snapshot(
                name=path.name,
                path=path,
                created=parse_deployment_date(path.name, prefix),
                meta=read_meta(path),
                is_current=os.path.abspath(path) == current_abs,
            ))
        return snapshots
