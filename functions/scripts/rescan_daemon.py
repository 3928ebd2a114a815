"""
Daemon that periodically runs the scheduled-rescan pass.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.dependencies import build_rescan_scheduler
from backend.scheduler import run_loop

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Scheduled SEO rescan daemon")
    parser.add_argument(
        "--interval-seconds",
        type=int,
        default=300,
        help="Seconds between rescan passes",
    )
    parser.add_argument(
        "--jitter-seconds",
        type=int,
        default=30,
        help="Max random jitter added to sleep",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    logger.info("Starting rescan daemon, interval %ds", args.interval_seconds)
    run_loop(
        build_rescan_scheduler(),
        args.interval_seconds,
        jitter_seconds=args.jitter_seconds,
        max_passes=1 if args.once else None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
