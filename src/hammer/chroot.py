#!/usr/bin/env python3
"""
Hammer Chroot Harness

Bind-mounts the host's kernel pseudo-filesystems into a writable snapshot,
runs package operations inside it and always unmounts afterwards.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Mapping, Optional, Sequence, TypeVar, Union

from common.exceptions import (
    BodyFailedError,
    MountFailedError,
    TeardownFailedError,
)

from .runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

T = TypeVar("T")

PSEUDO_FILESYSTEMS = ("proc", "sys", "dev")


class ChrootHarness:
    """
    Scoped bind mounts of /proc, /sys and /dev into a snapshot.

    Nested harnesses on the same root are not supported.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        filesystems: Sequence[str] = PSEUDO_FILESYSTEMS,
    ):
        self.runner = runner or CommandRunner()
        self.filesystems = tuple(filesystems)

    def _mount_all(self, root: Path) -> List[Path]:
        mounted: List[Path] = []
        try:
            for name in self.filesystems:
                target = root / name
                try:
                    target.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise MountFailedError(name, str(e)) from e

                result = self.runner.run(["mount", "--bind", f"/{name}", str(target)])
                if not result.success:
                    logger.error(f"Bind mount of /{name} into {root} failed")
                    raise MountFailedError(name, result.stderr)
                mounted.append(target)
        except BaseException:
            # Includes KeyboardInterrupt and SystemExit from the SIGTERM handler
            self._rollback(mounted)
            raise
        return mounted

    def _rollback(self, mounted: List[Path]):
        for target in reversed(mounted):
            result = self._unmount(target)
            if not result.success:
                logger.warning(f"Could not roll back mount {target}: {result.stderr.strip()}")

    def _unmount(self, target: Path) -> CommandResult:
        result = self.runner.run(["umount", str(target)])
        if not result.success:
            # Fall back to a lazy detach if something still holds the mount
            logger.warning(f"umount {target} failed, retrying lazily")
            result = self.runner.run(["umount", "-l", str(target)])
        return result

    def _unmount_all(self, mounted: List[Path]) -> Optional[TeardownFailedError]:
        first_error = None
        for target in reversed(mounted):
            result = self._unmount(target)
            if not result.success:
                logger.error(f"Failed to unmount {target}: {result.stderr.strip()}")
                if first_error is None:
                    first_error = TeardownFailedError(str(target), result.stderr)
        return first_error

    @contextmanager
    def mounted(self, root: Union[str, Path]) -> Iterator[Path]:
        """
        Keep the pseudo-filesystems mounted for the duration of the block.

        Teardown runs on every exit path, including KeyboardInterrupt and
        SystemExit, which propagate unchanged.

        Raises:
            MountFailedError: a bind mount failed; earlier mounts were undone.
            BodyFailedError: the block raised; mounts were torn down.
            TeardownFailedError: the block succeeded but an unmount failed.
        """
        root = Path(root)
        mounted = self._mount_all(root)
        logger.debug(f"Mounted {', '.join(self.filesystems)} into {root}")

        try:
            yield root
        except Exception as e:
            teardown_error = self._unmount_all(mounted)
            if teardown_error is not None:
                logger.error(f"Teardown also failed after body error: {teardown_error.message}")
            raise BodyFailedError(e) from e
        except BaseException:
            self._unmount_all(mounted)
            raise

        teardown_error = self._unmount_all(mounted)
        if teardown_error is not None:
            raise teardown_error

    def with_mounts(self, root: Union[str, Path], body: Callable[[Path], T]) -> T:
        """Run ``body(root)`` inside mounted(); see there for failure modes."""
        with self.mounted(root) as prepared:
            return body(prepared)

    def run(
        self,
        root: Union[str, Path],
        script: str,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        """Run a shell script inside ``root`` with chroot(8)."""
        return self.runner.run(
            ["chroot", str(root), "/bin/sh", "-c", script],
            env=env,
        )
