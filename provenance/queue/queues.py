"""RQ queue definitions."""

import logging
from functools import lru_cache

import redis
from rq import Queue

from provenance.queue.types import JobType

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def get_redis_pool(
    redis_url: str, max_connections: int = 10, socket_timeout: int = 5
) -> redis.ConnectionPool:
    """Connection pool shared by every queue on the same Redis URL."""
    return redis.ConnectionPool.from_url(
        redis_url,
        max_connections=max_connections,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
        socket_keepalive=True,
    )


def get_redis_connection(
    redis_url: str, max_connections: int = 10, socket_timeout: int = 5
) -> redis.Redis:
    return redis.Redis(
        connection_pool=get_redis_pool(redis_url, max_connections, socket_timeout)
    )


def queue_name(base_name: str, job_type: JobType) -> str:
    return f"{base_name}:{job_type.value}"


def create_verification_queues(
    connection: redis.Redis,
    base_name: str = "verification",
    job_timeout: int = 300,
) -> dict[JobType, Queue]:
    """Create one queue per job type.

    Workers listen on them in declaration order, so ``verify`` jobs are
    served before the heavier ``proof`` jobs.
    """
    queues = {
        job_type: Queue(
            queue_name(base_name, job_type),
            connection=connection,
            default_timeout=job_timeout,
        )
        for job_type in (JobType.VERIFY, JobType.PROOF)
    }
    logger.debug("Created verification queues: %s", [q.name for q in queues.values()])
    return queues
