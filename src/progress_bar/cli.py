#!/usr/bin/env python3
"""
Hammer progress bar

Reads progress directives from standard input and draws a bar on stderr.
"""

import argparse
import logging
import sys
from typing import List, Optional

from common.logging_config import setup_logging

from .filter import ProgressFilter


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="hammer-progress",
        description="Progress bar fed by set_total/msg/update/done lines on stdin",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log ignored directives")
    args = parser.parse_args(argv)

    setup_logging(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        with ProgressFilter() as bar:
            bar.feed_all(sys.stdin)
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
