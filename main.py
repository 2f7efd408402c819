"""Run one scout mission.

Usage:
    python main.py                    # all targets from the API
    python main.py --dry-run          # print the first parsed event, write nothing
    python main.py --url=https://...  # a single ad-hoc target
"""

import asyncio
import logging
import sys

from scout.config import settings
from scout.mission import main as run_mission


def setup_logging(log_level: str = "INFO") -> None:
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    # Browser and HTTP client internals are noisy at INFO
    for name in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)


def cli() -> None:
    setup_logging(settings.log_level)
    sys.exit(asyncio.run(run_mission(sys.argv[1:])))


if __name__ == "__main__":
    cli()
