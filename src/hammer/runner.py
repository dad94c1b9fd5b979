"""
External command execution for Hammer.

Every btrfs, mount, chroot and podman invocation goes through
CommandRunner so that it is logged consistently and can be replaced
by a fake in tests.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(a)) for a in argv)


class CommandRunner:
    """Runs external tools and captures their output."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def run(
        self,
        argv: Sequence[str],
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        """
        Run a command and return its result.

        Never raises for a non-zero exit status. A missing executable is
        reported as returncode 127 with the OS error as stderr.

        Args:
            argv: Command and arguments
            timeout: Seconds before the command is killed (default: runner timeout)
            env: Extra environment variables

        Returns:
            CommandResult with captured stdout and stderr.
        """
        argv_list = [str(a) for a in argv]
        logger.info(f"CMD {format_argv(argv_list)}")

        try:
            p = subprocess.run(
                argv_list,
                capture_output=True,
                text=True,
                timeout=timeout if timeout is not None else self.timeout,
                env=dict(os.environ, **(env or {})),
            )
        except FileNotFoundError as e:
            logger.error(f"Command not found: {argv_list[0]}")
            return CommandResult(argv=argv_list, returncode=127, stderr=str(e))
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out: {format_argv(argv_list)}")
            return CommandResult(argv=argv_list, returncode=124, stderr="timed out")

        if p.stdout:
            logger.debug(f"STDOUT {p.stdout.strip()}")
        if p.stderr:
            logger.debug(f"STDERR {p.stderr.strip()}")

        return CommandResult(
            argv=argv_list,
            returncode=p.returncode,
            stdout=p.stdout,
            stderr=p.stderr,
        )
