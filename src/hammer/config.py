"""
Hammer configuration.

Defaults describe the standard HackerOS Atomic layout. An optional JSON
file and a few environment variables override them.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from common.exceptions import InvalidConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/hammer/hammer.json")

ENV_OVERRIDES = {
    "HAMMER_BTRFS_TOP": "btrfs_top",
    "HAMMER_LOCK_FILE": "lock_file",
    "HAMMER_CONTAINER_TOOL": "container_tool",
    "HAMMER_KEEP": "keep_deployments",
}

_PATH_FIELDS = {"btrfs_top", "lock_file", "export_bin_dir"}
_INT_FIELDS = {"keep_deployments"}


def _default_bin_dir() -> Path:
    return Path.home() / ".local" / "bin"


@dataclass
class HammerConfig:
    """Paths, names and limits used by the deployment engine and sandbox."""
    btrfs_top: Path = Path("/btrfs-root")
    name_prefix: str = "hammer-"
    keep_deployments: int = 5
    lock_file: Path = Path("/run/hammer.lock")
    volume_root: str = "/"
    container_tool: str = "podman"
    container_prefix: str = "hammer-container-"
    container_image: str = "debian:stable"
    export_bin_dir: Path = field(default_factory=_default_bin_dir)
    command_timeout: Optional[float] = None

    def __post_init__(self):
        for name in _PATH_FIELDS:
            setattr(self, name, Path(getattr(self, name)))
        self.validate()

    @property
    def deployments_dir(self) -> Path:
        return self.btrfs_top / "deployments"

    @property
    def current_pointer(self) -> Path:
        return self.btrfs_top / "current"

    @property
    def container_name(self) -> str:
        return f"{self.container_prefix}default"

    def validate(self):
        """Raise InvalidConfigError for values the engine cannot work with."""
        if not isinstance(self.keep_deployments, int) or self.keep_deployments < 1:
            raise InvalidConfigError(
                "keep_deployments", self.keep_deployments, "must be an integer >= 1"
            )
        if not self.name_prefix or os.sep in self.name_prefix:
            raise InvalidConfigError(
                "name_prefix", self.name_prefix, "must be a non-empty bare name"
            )
        if not self.btrfs_top.is_absolute():
            raise InvalidConfigError("btrfs_top", self.btrfs_top, "must be absolute")
        if not self.container_tool:
            raise InvalidConfigError("container_tool", self.container_tool, "must not be empty")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HammerConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidConfigError(unknown[0], data[unknown[0]], "unknown setting")
        return cls(**dict(data))

    @classmethod
    def load(
        cls,
        path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "HammerConfig":
        """
        Load configuration from a JSON file and environment overrides.

        Args:
            path: Config file (default: /etc/hammer/hammer.json). A missing
                file means built-in defaults.
            environ: Environment to read overrides from (default: os.environ)

        Returns:
            Validated HammerConfig.
        """
        path = Path(path) if path else DEFAULT_CONFIG_PATH
        environ = os.environ if environ is None else environ

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise InvalidConfigError("config_file", path, str(e)) from e
            if not isinstance(data, dict):
                raise InvalidConfigError("config_file", path, "must contain a JSON object")
            logger.debug(f"Loaded configuration from {path}")

        for var, name in ENV_OVERRIDES.items():
            if var not in environ:
                continue
            value: Any = environ[var]
            if name in _INT_FIELDS:
                try:
                    value = int(value)
                except ValueError:
                    raise InvalidConfigError(name, value, f"{var} must be an integer")
            data[name] = value

        return cls.from_dict(data)
