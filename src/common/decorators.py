"""
Shared Decorators

Privilege checks and timing for Hammer operations.
"""

from __future__ import annotations

import functools
import logging
import os
import time
from typing import Callable

from .exceptions import RootRequiredError

logger = logging.getLogger(__name__)


def require_root(func: Callable) -> Callable:
    """
    Decorator that requires root/sudo privileges.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if os.geteuid() != 0:
            raise RootRequiredError(func.__name__.replace("cmd_", ""))
        return func(*args, **kwargs)
    return wrapper


def timed(func: Callable) -> Callable:
    """
    Decorator to log function execution time.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed = time.perf_counter() - start
            logger.debug(f"{func.__name__} completed in {elapsed:.3f}s")
    return wrapper
