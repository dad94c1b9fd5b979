"""Deployment metadata stored as meta.json at the root of each snapshot."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from utils.atomic_write import atomic_write_json

logger = logging.getLogger(__name__)

META_FILENAME = "meta.json"


@dataclass
class DeploymentMeta:
    """What produced a deployment and from which parent."""
    created: str = ""
    action: str = ""
    parent: str = ""
    kernel: str = ""

    @classmethod
    def new(cls, action: str, parent: str, kernel: str = "") -> "DeploymentMeta":
        return cls(
            created=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            action=action,
            parent=parent,
            kernel=kernel,
        )

    @property
    def created_at(self) -> Optional[datetime]:
        try:
            return datetime.fromisoformat(self.created)
        except ValueError:
            return None


def write_meta(deployment: Union[str, Path], meta: DeploymentMeta) -> Path:
    path = Path(deployment) / META_FILENAME
    atomic_write_json(path, asdict(meta))
    logger.debug(f"Wrote {path}")
    return path


def read_meta(deployment: Union[str, Path]) -> DeploymentMeta:
    """Read metadata; missing or unreadable files give empty metadata."""
    path = Path(deployment) / META_FILENAME
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return DeploymentMeta()
    except (OSError, json.JSONDecodeError) as e:
        logger.debug(f"Ignoring unreadable metadata {path}: {e}")
        return DeploymentMeta()

    if not isinstance(raw, dict):
        return DeploymentMeta()
    return DeploymentMeta(**{
        k: str(raw[k]) for k in ("created", "action", "parent", "kernel") if k in raw
    })
