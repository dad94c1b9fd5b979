#!/usr/bin/env python3
"""
Hammer Deployment Engine

Atomic system changes on a btrfs root:
1. Snapshot the current deployment into a new writable subvolume
2. Bind-mount /proc, /sys and /dev and run apt inside it with chroot
3. Unmount, record metadata and seal the snapshot read-only
4. Make it the default subvolume for the next boot

A failure before step 4 leaves the boot default and the current pointer
untouched. Half-built snapshots stay on disk for inspection until clean.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from common.decorators import timed
from common.exceptions import (
    BackingStoreError,
    HammerError,
    InsufficientHistoryError,
    InvalidNameError,
    NameCollisionError,
    NotFoundError,
    PackageOpFailedError,
    PointerUpdateError,
    SnapshotError,
    SystemValidationError,
)
from common.logging_config import LogContext

from .boot import BootSelector
from .chroot import ChrootHarness
from .config import HammerConfig
from .container import APT_ENV, ContainerSandbox
from .lock import host_lock
from .metadata import DeploymentMeta, read_meta, write_meta
from .runner import CommandRunner
from .snapshot import Snapshot, SnapshotStore, deployment_name

logger = logging.getLogger(__name__)

# Debian policy: lowercase alphanumerics plus "+-.", at least two chars
PACKAGE_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9+.-]+(:[a-z0-9-]+)?$")

KERNEL_QUERY = (
    "dpkg-query -W -f='${Version}\\n' 'linux-image-[0-9]*' 2>/dev/null "
    "| sort -V | tail -n 1"
)


class DeploymentStatus(Enum):
    """Status of a deployment operation."""
    IDLE = "idle"
    VALIDATING = "validating"
    SNAPSHOTTING = "snapshotting"
    MOUNTING = "mounting"
    RUNNING = "running"
    SEALING = "sealing"
    PROMOTING = "promoting"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class DeploymentResult:
    """Outcome of deploy, an atomic operation or a switch."""
    path: Path
    subvol_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def promoted(self) -> bool:
        return self.subvol_id is not None


@dataclass
class CleanReport:
    """What clean removed, kept and failed to remove."""
    deleted: List[Path] = field(default_factory=list)
    kept: List[Path] = field(default_factory=list)
    failed: Dict[Path, str] = field(default_factory=dict)
    prune_error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.prune_error is None


@dataclass
class SystemStatus:
    """Snapshot of the host's deployment state."""
    current: Optional[Path]
    meta: DeploymentMeta
    sealed: Optional[bool]
    current_id: Optional[str]
    default_id: Optional[str]

    @property
    def boot_matches_current(self) -> bool:
        return self.current_id is not None and self.current_id == self.default_id


def validate_package_name(package: str) -> str:
    if not PACKAGE_NAME_RE.match(package or ""):
        raise InvalidNameError("package name", package)
    return package


def validate_deployment_id(deployment: str) -> str:
    """Explicit switch targets are bare names inside the deployments directory."""
    if not deployment or os.sep in deployment or deployment in (".", ".."):
        raise InvalidNameError("deployment name", deployment)
    return deployment


class DeploymentEngine:
    """
    Drives snapshot store, chroot harness and boot selector.

    Verbs: deploy, atomic_install, atomic_remove, atomic_update, switch,
    rollback, clean, status, history.
    """

    def __init__(
        self,
        store: SnapshotStore,
        harness: ChrootHarness,
        selector: BootSelector,
        config: Optional[HammerConfig] = None,
        sandbox: Optional[ContainerSandbox] = None,
        clock: Callable[[], date] = date.today,
    ):
        self.store = store
        self.harness = harness
        self.selector = selector
        self.config = config or HammerConfig()
        self.sandbox = sandbox
        self.clock = clock
        self.status = DeploymentStatus.IDLE
        self._progress_callback: Optional[Callable[[DeploymentStatus, str], None]] = None

    @classmethod
    def from_config(
        cls,
        config: HammerConfig,
        runner: Optional[CommandRunner] = None,
    ) -> "DeploymentEngine":
        """Wire the real collaborators for ``config``."""
        runner = runner or CommandRunner(timeout=config.command_timeout)
        store = SnapshotStore(config.deployments_dir, config.current_pointer, runner)
        sandbox = ContainerSandbox(
            name=config.container_name,
            image=config.container_image,
            tool=config.container_tool,
            bin_dir=config.export_bin_dir,
            runner=runner,
        )
        return cls(
            store=store,
            harness=ChrootHarness(runner),
            selector=BootSelector(store, runner, config.volume_root),
            config=config,
            sandbox=sandbox,
        )

    def set_progress_callback(
        self,
        callback: Callable[[DeploymentStatus, str], None],
    ):
        """
        Set callback for progress updates.

        Args:
            callback: Function(status, message)
        """
        self._progress_callback = callback

    def _notify(self, status: DeploymentStatus, message: str):
        """Notify progress callback."""
        self.status = status
        if self._progress_callback:
            self._progress_callback(status, message)

    def _locked(self):
        return host_lock(self.config.lock_file)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def history(self) -> List[Path]:
        """History snapshot paths, oldest first."""
        return sorted(self.store.list(self.config.name_prefix))

    def _validate(self) -> Path:
        """Check the root is btrfs and the current pointer names a sealed snapshot."""
        self._notify(DeploymentStatus.VALIDATING, "Validating system...")
        if not self.selector.volume_is_btrfs():
            raise SystemValidationError(
                f"Root filesystem {self.selector.volume_root} is not btrfs"
            )
        current = self.selector.current()
        if current is None:
            raise SystemValidationError(
                f"Current deployment pointer {self.selector.current_pointer} is missing"
            )
        if not current.exists():
            raise SystemValidationError(f"Current deployment {current} does not exist")
        try:
            sealed = self.store.is_sealed(current)
        except BackingStoreError as e:
            raise SystemValidationError(
                f"Current deployment {current} is not a btrfs subvolume: {e.message}"
            )
        if not sealed:
            raise SystemValidationError(f"Current deployment {current} is not read-only")
        return current

    def _new_deployment_path(self) -> Path:
        name = deployment_name(self.config.name_prefix, self.clock())
        dest = self.config.deployments_dir / name
        if os.path.lexists(dest):
            raise NameCollisionError(name)
        return dest

    def _write_meta(self, dest: Path, meta: DeploymentMeta):
        try:
            write_meta(dest, meta)
        except OSError as e:
            raise BackingStoreError("write metadata", str(dest), str(e)) from e

    def _kernel_version(self, root: Path) -> str:
        result = self.harness.run(root, KERNEL_QUERY)
        if not result.success:
            logger.debug(f"Kernel version query failed in {root}")
            return ""
        return result.stdout.strip()

    def _promote(self, target: Path, result: DeploymentResult):
        self._notify(DeploymentStatus.PROMOTING, f"Setting {target.name} as boot default...")
        try:
            result.subvol_id = self.selector.promote(target)
        except PointerUpdateError as e:
            # Boot default already switched; only the convenience link is stale
            result.subvol_id = e.details.get("subvol_id")
            logger.warning(e.message)
            result.warnings.append(e.message)

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    @timed
    def deploy(self) -> DeploymentResult:
        """
        Create a sealed snapshot of the current deployment named for today.

        The boot default is not changed.

        Raises:
            NameCollisionError: today's deployment already exists.
        """
        with self._locked():
            try:
                parent = self._validate()
                dest = self._new_deployment_path()

                self._notify(DeploymentStatus.SNAPSHOTTING, f"Creating deployment {dest.name}...")
                self.store.create(parent, dest, writable=True)
                kernel = self._kernel_version(dest)
                self._write_meta(dest, DeploymentMeta.new("deploy", parent.name, kernel))

                self._notify(DeploymentStatus.SEALING, f"Sealing {dest.name}...")
                self.store.seal(dest, readonly=True)
            except HammerError as e:
                self._notify(DeploymentStatus.FAILED, e.message)
                raise

        self._notify(DeploymentStatus.COMPLETE, f"Deployment created at {dest}")
        return DeploymentResult(path=dest)

    def _apply(self, action: str, script: str, package: str = "") -> DeploymentResult:
        verb = action.split()[0]
        with self._locked(), LogContext(operation=verb, package=package):
            try:
                parent = self._validate()
                dest = self._new_deployment_path()

                self._notify(
                    DeploymentStatus.SNAPSHOTTING,
                    f"Creating deployment {dest.name} from {parent.name}...",
                )
                self.store.create(parent, dest, writable=True)

                def body(root: Path) -> str:
                    self._notify(DeploymentStatus.RUNNING, f"Running apt ({action})...")
                    output = self.harness.run(root, script, env=APT_ENV)
                    if not output.success:
                        raise PackageOpFailedError(
                            verb, package, f"deployment {root.name}", output.stderr
                        )
                    return self._kernel_version(root)

                self._notify(DeploymentStatus.MOUNTING, f"Preparing chroot in {dest.name}...")
                kernel = self.harness.with_mounts(dest, body)

                self._write_meta(dest, DeploymentMeta.new(action, parent.name, kernel))
                self._notify(DeploymentStatus.SEALING, f"Sealing {dest.name}...")
                self.store.seal(dest, readonly=True)

                result = DeploymentResult(path=dest)
                self._promote(dest, result)
            except HammerError as e:
                self._notify(DeploymentStatus.FAILED, e.message)
                raise

        self._notify(DeploymentStatus.COMPLETE, f"{action} completed. Reboot to apply.")
        return result

    @timed
    def atomic_install(self, package: str) -> DeploymentResult:
        """Install ``package`` into a new deployment and boot it next."""
        q = shlex.quote(validate_package_name(package))
        script = f"apt-get update && apt-get install -y {q} && apt-get autoremove -y"
        return self._apply(f"install {package}", script, package)

    @timed
    def atomic_remove(self, package: str) -> DeploymentResult:
        """Remove ``package`` in a new deployment and boot it next."""
        q = shlex.quote(validate_package_name(package))
        script = f"apt-get update && apt-get remove -y {q} && apt-get autoremove -y"
        return self._apply(f"remove {package}", script, package)

    @timed
    def atomic_update(self) -> DeploymentResult:
        """Upgrade all packages in a new deployment, keeping local config files."""
        script = (
            "apt-get update && "
            "apt-get upgrade -y -o Dpkg::Options::=--force-confold && "
            "apt-get autoremove -y"
        )
        return self._apply("update", script)

    def _history_target(self, steps: int) -> Path:
        history = sorted(self.history(), reverse=True)
        if len(history) <= steps:
            raise InsufficientHistoryError(len(history), steps + 1)
        return history[steps]

    def switch(self, deployment: Optional[str] = None) -> DeploymentResult:
        """
        Boot ``deployment`` next, or the second-newest history entry.

        Raises:
            InsufficientHistoryError: no argument and fewer than two entries.
            NotFoundError: the target does not exist.
        """
        if deployment is not None:
            target = self.config.deployments_dir / validate_deployment_id(deployment)
        else:
            target = None

        with self._locked():
            try:
                if target is None:
                    target = self._history_target(1)
                if not target.exists():
                    raise NotFoundError(str(target))

                result = DeploymentResult(path=target)
                self._promote(target, result)
            except HammerError as e:
                self._notify(DeploymentStatus.FAILED, e.message)
                raise

        self._notify(DeploymentStatus.COMPLETE, f"Switched to deployment {target}. Reboot to apply.")
        return result

    def rollback(self, steps: int = 1) -> DeploymentResult:
        """Boot the deployment ``steps`` entries older than the newest."""
        if steps < 1:
            raise InvalidNameError("rollback step count", str(steps))

        with self._locked():
            try:
                target = self._history_target(steps)
                result = DeploymentResult(path=target)
                self._promote(target, result)
            except HammerError as e:
                self._notify(DeploymentStatus.FAILED, e.message)
                raise

        self._notify(
            DeploymentStatus.COMPLETE,
            f"Rolled back {steps} step(s) to {target.name}. Reboot to apply.",
        )
        return result

    def clean(self, keep: Optional[int] = None) -> CleanReport:
        """
        Delete all but the newest ``keep`` deployments and prune containers.

        Individual delete failures are recorded and do not stop the loop.
        """
        keep = self.config.keep_deployments if keep is None else keep
        if keep < 1:
            raise InvalidNameError("retention count", str(keep))

        report = CleanReport()
        with self._locked():
            history = self.history()
            cutoff = max(0, len(history) - keep)
            report.kept = history[cutoff:]

            for path in history[:cutoff]:
                try:
                    self.store.delete(path)
                    report.deleted.append(path)
                except SnapshotError as e:
                    logger.error(f"Failed to delete deployment {path}: {e.message}")
                    report.failed[path] = e.message

            if self.sandbox is not None:
                try:
                    self.sandbox.prune()
                except HammerError as e:
                    logger.error(e.message)
                    report.prune_error = e.message

        logger.info(
            f"Clean removed {len(report.deleted)} deployment(s), kept {len(report.kept)}"
        )
        return report

    def get_status(self) -> SystemStatus:
        """Current deployment, its metadata and whether it boots next."""
        current = self.selector.current()
        sealed = None
        current_id = None
        meta = DeploymentMeta()

        if current is not None and current.exists():
            meta = read_meta(current)
            try:
                sealed = self.store.is_sealed(current)
                current_id = self.store.resolve_id(current)
            except (BackingStoreError, NotFoundError) as e:
                logger.debug(f"Could not inspect {current}: {e.message}")

        return SystemStatus(
            current=current,
            meta=meta,
            sealed=sealed,
            current_id=current_id,
            default_id=self.selector.default_id(),
        )

    def get_history(self) -> List[Snapshot]:
        """History entries with metadata, newest first."""
        return list(reversed(self.store.get_snapshots(self.config.name_prefix)))
