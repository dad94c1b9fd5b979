"""
Hammer progress bar filter

Draws a terminal progress bar from line-delimited directives so shell
scripts can report progress without linking a UI library.
"""

from .filter import ProgressFilter, ProgressState, make_progress

__all__ = [
    "ProgressFilter",
    "ProgressState",
    "make_progress",
]
