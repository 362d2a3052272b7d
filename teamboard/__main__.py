"""
Run the teamboard server: ``python -m teamboard``.
"""

from __future__ import annotations

import argparse
import logging
import os

import uvicorn

from teamboard.app import app
from teamboard.config import get_settings
from teamboard.dependencies import get_store

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Teamboard backend")
    parser.add_argument("--host", default=settings.host, help="Interface to bind")
    parser.add_argument(
        "--port", type=int, default=settings.port, help="Port to listen on"
    )
    parser.add_argument(
        "--in-memory",
        action="store_true",
        help="Skip the database and keep everything in process memory",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    if args.in_memory:
        os.environ["TEAMBOARD_USE_IN_MEMORY_BACKENDS"] = "true"
        get_settings.cache_clear()

    store = get_store()
    logger.info("Server running on %s:%d (%s store)", args.host, args.port, store.mode)

    uvicorn.run(
        app, host=args.host, port=args.port, log_level=settings.log_level.lower()
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
