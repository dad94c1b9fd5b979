"""
Hammer Utility Modules

Atomic file and symlink operations.
"""

from .atomic_write import (
    atomic_write_text,
    atomic_write_json,
    atomic_symlink,
)

__all__ = [
    "atomic_write_text",
    "atomic_write_json",
    "atomic_symlink",
]
