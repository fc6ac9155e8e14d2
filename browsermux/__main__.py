"""Command-line entry point: ``browsermux`` or ``python -m browsermux``."""

from __future__ import annotations

import logging
import sys
from typing import Optional, Sequence

from .config import configure_logging, load_config
from .server import run

logger = logging.getLogger("browsermux")


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        config = load_config(argv)
    except ValueError as exc:
        print(f"browsermux: {exc}", file=sys.stderr)
        return 2
    configure_logging(config.log_level)
    try:
        return run(config)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(main())
