"""
Progress bar driven by text directives on standard input.

Directives, one per line:
    set_total <N>   set the bar's maximum
    msg <text>      set the bar's message
    update          advance by one
    done            finish with the elapsed wall-clock time

Blank and unrecognized lines are ignored.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

logger = logging.getLogger(__name__)

INITIAL_MESSAGE = "Initializing..."


@dataclass
class ProgressState:
    """Bar state as set by the directives read so far."""
    total: int = 0
    updates: int = 0
    message: str = INITIAL_MESSAGE
    finished: bool = False

    @property
    def position(self) -> int:
        """Reported position, never beyond the total."""
        return min(self.updates, self.total)


def make_progress(console: Optional[Console] = None) -> Progress:
    return Progress(
        TimeElapsedColumn(),
        BarColumn(bar_width=40),
        MofNCompleteColumn(),
        TextColumn("{task.description}"),
        TextColumn("ETA:"),
        TimeRemainingColumn(),
        console=console or Console(stderr=True),
    )


class ProgressFilter:
    """
    Applies directives to a ProgressState and mirrors it on a rich bar.

    Example:
        with ProgressFilter() as bar:
            bar.feed_all(sys.stdin)
    """

    def __init__(
        self,
        progress: Optional[Progress] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.state = ProgressState()
        self.progress = progress or make_progress()
        self.clock = clock
        self.finish_message: Optional[str] = None
        self._start = clock()
        self._task: Optional[TaskID] = None

    def __enter__(self):
        self.progress.start()
        self._task = self.progress.add_task(self.state.message, total=self.state.total)
        return self

    def __exit__(self, *args):
        self.progress.stop()

    def _render(self):
        if self._task is None:
            return
        self.progress.update(
            self._task,
            total=self.state.total,
            completed=self.state.position,
            description=self.finish_message or self.state.message,
        )

    def feed(self, line: str) -> bool:
        """
        Apply one directive line.

        Returns:
            True once ``done`` has been read.
        """
        if self.state.finished:
            return True

        line = line.strip()
        if not line:
            return False

        if line.startswith("set_total "):
            value = line[len("set_total "):]
            digits = value[1:] if value.startswith("+") else value
            # ASCII only: str.isdigit() also accepts superscripts int() rejects
            if digits.isascii() and digits.isdigit():
                self.state.total = int(digits)
            else:
                logger.debug(f"Ignoring bad total: {value!r}")
        elif line.startswith("msg "):
            self.state.message = line[len("msg "):]
        elif line == "update":
            self.state.updates += 1
        elif line == "done":
            elapsed = self.clock() - self._start
            self.finish_message = f"Completed in {elapsed:.2f}s"
            self.state.finished = True
        else:
            logger.debug(f"Ignoring directive: {line!r}")
            return False

        self._render()
        return self.state.finished

    def feed_all(self, lines: Iterable[str]) -> ProgressState:
        """Apply directives until ``done`` or end of input."""
        for line in lines:
            if self.feed(line):
                break
        return self.state
