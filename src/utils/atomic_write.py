"""
Atomic file operations for Hammer.

Ensures file and symlink writes are atomic - either complete successfully
or no change. Uses write-to-temp-then-rename pattern for POSIX atomicity
guarantees.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union


def _fsync_dir(directory: Path) -> None:
    try:
        dir_fd = os.open(str(directory), os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except (OSError, AttributeError):
        # O_DIRECTORY not available on all platforms
        pass


def atomic_write_text(path: Union[str, Path], content: str, mode: int = 0o644) -> None:
    """
    Write text content to file atomically.

    Uses write-to-temp-then-rename pattern to ensure atomicity.
    On POSIX systems, rename() is atomic within the same filesystem.

    Args:
        path: Destination file path
        content: Text content to write
        mode: File permissions (default 0o644)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    # Temp file in the same directory so the rename stays on one filesystem
    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp"
    )

    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
        _fsync_dir(path.parent)

    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def atomic_write_json(
    path: Union[str, Path],
    data: Any,
    indent: int = 2,
    mode: int = 0o644,
) -> None:
    """
    Write JSON data to file atomically.

    Args:
        path: Destination file path
        data: JSON-serializable data
        indent: JSON indentation (default 2)
        mode: File permissions (default 0o644)
    """
    content = json.dumps(data, indent=indent, ensure_ascii=False)
    atomic_write_text(path, content + '\n', mode)


def atomic_symlink(target: Union[str, Path], link: Union[str, Path]) -> None:
    """
    Point ``link`` at ``target``, replacing any existing link atomically.

    A temporary symlink is created next to ``link`` and renamed over it,
    so readers always see either the old or the new target.

    Args:
        target: Path the link should resolve to
        link: Location of the symlink
    """
    link = Path(link)
    link.parent.mkdir(parents=True, exist_ok=True)

    temp_link = link.parent / f".{link.name}.{os.getpid()}.tmp"
    try:
        os.unlink(temp_link)
    except FileNotFoundError:
        pass

    os.symlink(str(target), temp_link)
    try:
        os.replace(temp_link, link)
        _fsync_dir(link.parent)
    except Exception:
        try:
            os.unlink(temp_link)
        except OSError:
            pass
        raise
