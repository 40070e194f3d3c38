"""Worker pool for verification jobs."""

import logging
import signal
from typing import Any

import redis
from redis.exceptions import RedisError
from rq import Queue, Worker
from rq.worker_pool import WorkerPool

from provenance.queue.queues import create_verification_queues

logger = logging.getLogger(__name__)


class VerificationWorker:
    """Runs a bounded pool of RQ workers over the verification queues.

    Workers listen on ``verify`` before ``proof`` and run the RQ scheduler,
    which re-enqueues retries once their backoff has elapsed.
    """

    def __init__(
        self,
        connection: redis.Redis,
        queue_name: str = "verification",
        num_workers: int = 3,
        job_timeout: int = 300,
    ) -> None:
        self.connection = connection
        self.num_workers = max(1, num_workers)
        self.queues: list[Queue] = list(
            create_verification_queues(connection, queue_name, job_timeout).values()
        )
        self.rq_worker: Worker | None = None
        self.pool: WorkerPool | None = None
        self._shutdown_requested = False

    def _setup_signal_handlers(self) -> None:
        def signal_handler(signum: int, frame: Any) -> None:
            logger.info(f"Received signal {signum}, initiating graceful shutdown")
            self._shutdown_requested = True
            if self.rq_worker:
                self.rq_worker.request_stop(signum, frame)

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    def setup(self) -> None:
        """Check the Redis connection.

        Raises:
            RuntimeError: If Redis cannot be reached
        """
        try:
            self.connection.ping()
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise RuntimeError(f"Redis connection failed: {e}") from e
        logger.info(
            f"Verification worker setup complete: "
            f"queues={[q.name for q in self.queues]}, workers={self.num_workers}"
        )

    def work(self, burst: bool = False, logging_level: str = "INFO") -> None:
        """Process jobs until stopped (or until the queues drain, in burst mode)."""
        self.setup()
        if self.num_workers == 1:
            # Single worker runs in this process
            self._setup_signal_handlers()
            self.rq_worker = Worker(self.queues, connection=self.connection)
            self.rq_worker.work(
                burst=burst, with_scheduler=True, logging_level=logging_level
            )
            return

        # WorkerPool installs its own signal handlers and runs the scheduler
        self.pool = WorkerPool(
            self.queues, connection=self.connection, num_workers=self.num_workers
        )
        self.pool.start(burst=burst, logging_level=logging_level)

    def get_status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "queues": [q.name for q in self.queues],
            "num_workers": self.num_workers,
            "shutdown_requested": self._shutdown_requested,
        }
        if self.rq_worker is not None:
            status.update(
                {
                    "state": str(self.rq_worker.get_state()),
                    "successful_job_count": self.rq_worker.successful_job_count,
                    "failed_job_count": self.rq_worker.failed_job_count,
                }
            )
        return status
