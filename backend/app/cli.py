"""``capstone-worker``: run the Celery originality worker outside the API process."""

from __future__ import annotations

import argparse
import logging

from app.db import create_db_and_tables
from app.jobs.celery_app import celery_app
from app.logging_config import configure_logging
from app.settings import settings
from app.storage_provider import ensure_dir

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="capstone-worker", description="Process queued originality checks.")
    parser.add_argument("--concurrency", type=int, default=settings.worker_concurrency, help="worker processes to run")
    parser.add_argument("--log-level", default=settings.log_level, help="root log level")
    return parser


def worker_argv(concurrency: int, log_level: str) -> list[str]:
    return [
        "worker",
        f"--loglevel={log_level.upper()}",
        f"--concurrency={max(1, concurrency)}",
        f"--queues={settings.queue_name}",
        "--hostname=originality@%h",
    ]


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(log_level=args.log_level, environment=settings.environment)
    ensure_dir(settings.data_path)
    create_db_and_tables()

    logger.info("starting originality worker", extra={"concurrency": args.concurrency, "queue": settings.queue_name})
    # Celery handles SIGTERM as a warm shutdown: running checks finish, unstarted ones stay on the broker.
    celery_app.worker_main(worker_argv(args.concurrency, args.log_level))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
