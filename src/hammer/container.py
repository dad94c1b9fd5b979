#!/usr/bin/env python3
"""
Hammer Container Sandbox

Installs and removes packages inside a long-lived Debian container and
exports the installed binary into the user's PATH.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from common.exceptions import (
    ContainerCreateFailedError,
    PackageOpFailedError,
    PruneFailedError,
    UpdateFailedError,
)

from .runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class ContainerSandbox:
    """
    Package operations inside the ``<prefix>default`` container.

    The container is created lazily from a fixed image running an idle
    command, and persists across commands until pruned.
    """

    def __init__(
        self,
        name: str = "hammer-container-default",
        image: str = "debian:stable",
        tool: str = "podman",
        bin_dir: Optional[Path] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.name = name
        self.image = image
        self.tool = tool
        self.bin_dir = Path(bin_dir) if bin_dir else Path.home() / ".local" / "bin"
        self.runner = runner or CommandRunner()

    def _engine(self, *args: str) -> CommandResult:
        return self.runner.run([self.tool, *args])

    def _exec(self, *argv: str) -> CommandResult:
        env_args = []
        for key, value in APT_ENV.items():
            env_args += ["-e", f"{key}={value}"]
        return self._engine("exec", *env_args, self.name, *argv)

    def exists(self) -> bool:
        result = self._engine(
            "ps", "-a", "--filter", f"name=^{self.name}$", "--format", "{{.Names}}"
        )
        if not result.success:
            return False
        return self.name in result.stdout.split()

    def ensure(self) -> None:
        """Create the container if it does not exist yet."""
        if self.exists():
            return

        logger.info(f"Creating container {self.name} from {self.image}")
        result = self._engine(
            "run", "-d", "--name", self.name, self.image, "sleep", "infinity"
        )
        if not result.success:
            raise ContainerCreateFailedError(self.name, result.stderr)

    def update(self) -> None:
        """Refresh package lists inside the container."""
        self.ensure()
        result = self._exec("apt-get", "update")
        if not result.success:
            raise UpdateFailedError(self.name, result.stderr)

    def install(self, package: str) -> Optional[Path]:
        """
        Install ``package`` and export /usr/bin/<package> to the host.

        Returns:
            Path of the exported binary, or None if nothing was exported.
        """
        self.update()
        result = self._exec("apt-get", "install", "-y", package)
        if not result.success:
            raise PackageOpFailedError("install", package, f"container {self.name}", result.stderr)

        exported = self.export_binary(package)
        logger.info(f"Package {package} installed in container {self.name}")
        return exported

    def remove(self, package: str) -> None:
        self.update()
        result = self._exec("apt-get", "remove", "-y", package)
        if not result.success:
            raise PackageOpFailedError("remove", package, f"container {self.name}", result.stderr)
        logger.info(f"Package {package} removed from container {self.name}")

    def export_binary(self, package: str) -> Optional[Path]:
        """Best-effort copy of /usr/bin/<package> into the host bin dir."""
        try:
            self.bin_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create {self.bin_dir}: {e}")
            return None

        result = self._engine("cp", f"{self.name}:/usr/bin/{package}", str(self.bin_dir))
        if not result.success:
            logger.info(f"No /usr/bin/{package} to export from {self.name}")
            return None

        exported = self.bin_dir / package
        logger.info(f"Exported {exported}")
        return exported

    def prune(self) -> None:
        """Remove unused containers and images."""
        result = self._engine("system", "prune", "-f")
        if not result.success:
            raise PruneFailedError(result.stderr)
