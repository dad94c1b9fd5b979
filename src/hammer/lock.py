"""Host-wide lock preventing concurrent Hammer operations."""

from __future__ import annotations

import fcntl
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from common.exceptions import LockError

logger = logging.getLogger(__name__)


@contextmanager
def host_lock(lock_file: Union[str, Path]) -> Iterator[Path]:
    """Acquire an exclusive, non-blocking lock for the duration of the block."""
    lock_file = Path(lock_file)
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_file, "a+", encoding="utf-8") as f:
        try:
            fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise LockError(str(lock_file))
        f.seek(0)
        f.truncate()
        f.write(f"{os.getpid()}\n")
        f.flush()
        logger.debug(f"Acquired lock {lock_file}")
        try:
            yield lock_file
        finally:
            fcntl.flock(f, fcntl.LOCK_UN)
            logger.debug(f"Released lock {lock_file}")
