"""Main entry point for the verification worker."""

import argparse

from provenance.core.config import settings
from provenance.core.logging import configure_logging, get_logger
from provenance.queue.pipeline import VerificationPipeline
from provenance.queue.queues import get_redis_connection
from provenance.queue.worker import VerificationWorker


def main(argv: list[str] | None = None) -> None:
    """Run the verification worker pool."""
    parser = argparse.ArgumentParser(description="Verification job worker")
    parser.add_argument(
        "--workers",
        type=int,
        default=settings.VERIFY_WORKER_COUNT,
        help="number of worker processes",
    )
    parser.add_argument(
        "--burst", action="store_true", help="exit once the queues are empty"
    )
    args = parser.parse_args(argv)

    configure_logging(level=settings.LOG_LEVEL)
    logger = get_logger(__name__)

    if not settings.REDIS_URL:
        raise SystemExit("REDIS_URL is not set; verification runs synchronously")

    # Drop job records past their retention windows before taking new work
    pipeline = VerificationPipeline.from_settings(settings)
    pipeline.prune_jobs()
    pipeline.close()

    connection = get_redis_connection(
        settings.REDIS_URL, settings.REDIS_POOL_SIZE, settings.REDIS_SOCKET_TIMEOUT
    )
    worker = VerificationWorker(
        connection,
        queue_name=settings.VERIFY_QUEUE_NAME,
        num_workers=args.workers,
        job_timeout=settings.VERIFY_JOB_TIMEOUT,
    )
    logger.info("worker_starting", workers=args.workers, burst=args.burst)
    worker.work(burst=args.burst, logging_level=settings.LOG_LEVEL)


if __name__ == "__main__":
    main()
