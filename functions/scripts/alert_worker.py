"""
Worker that drains the alert queue and delivers the queued alert emails.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.dependencies import get_alert_queue
from backend.notifier import drain_alert_queue

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="SEO alert email worker")
    parser.add_argument(
        "--poll-seconds",
        type=int,
        default=5,
        help="Seconds to block on the queue before polling again",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Deliver everything currently queued and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    queue = get_alert_queue()
    if args.once:
        delivered = drain_alert_queue(queue)
        logger.info("Delivered %d alerts", delivered)
        return 0

    while True:
        try:
            delivered = drain_alert_queue(queue, block=True, timeout=args.poll_seconds)
            if delivered:
                logger.info("Delivered %d alerts", delivered)
            else:
                time.sleep(args.poll_seconds)
        except Exception:
            logger.exception("Alert delivery failed")


if __name__ == "__main__":
    raise SystemExit(main())
