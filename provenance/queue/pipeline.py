"""Verification pipeline: queued jobs with a synchronous fallback."""

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import redis
from redis.exceptions import RedisError
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job

from provenance.core.config import Settings
from provenance.core.logging import get_logger
from provenance.core.metrics import JOBS_ENQUEUED, QUEUE_SIZE, SYNC_VERIFICATIONS
from provenance.queue.job import JobHandle, SyncResult, VerificationJob
from provenance.queue.processor import process_verification_job
from provenance.queue.queues import create_verification_queues, get_redis_connection
from provenance.queue.retry import retry_policy
from provenance.queue.types import JobStatus, JobType
from provenance.storage.database import get_session_factory
from provenance.storage.ledger import JobRepository
from provenance.verification.models import VerificationRequest
from provenance.verification.service import VerificationService

logger = get_logger(__name__)


class VerificationPipeline:
    """Accepts verification requests and tracks their jobs.

    Built once at process start. With queues it hands work to RQ workers
    and returns a ``JobHandle``; without them it runs the verification
    inline and returns a ``SyncResult``.
    """

    def __init__(
        self,
        service: VerificationService,
        repository: JobRepository,
        queues: dict[JobType, Queue] | None = None,
        connection: redis.Redis | None = None,
        max_attempts: int = 3,
        backoff_seconds: int = 5,
        job_timeout: int = 300,
        completed_ttl: int = 7 * 24 * 3600,
        failed_ttl: int = 30 * 24 * 3600,
        poll_url_prefix: str = "/api/v1/verification-jobs",
    ) -> None:
        self.service = service
        self.repository = repository
        self.queues = queues
        self.connection = connection
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.job_timeout = job_timeout
        self.completed_ttl = completed_ttl
        self.failed_ttl = failed_ttl
        self.poll_url_prefix = poll_url_prefix.rstrip("/")

    @classmethod
    def from_settings(
        cls, settings: Settings, service: VerificationService | None = None
    ) -> "VerificationPipeline":
        """Build the pipeline, falling back to sync mode if Redis is unreachable."""
        service = service or VerificationService.from_settings(settings)
        repository = JobRepository(
            get_session_factory(settings.DATABASE_URL, settings.MAX_CONNECTIONS)
        )

        queues = None
        connection = None
        if settings.REDIS_URL:
            try:
                connection = get_redis_connection(
                    settings.REDIS_URL,
                    settings.REDIS_POOL_SIZE,
                    settings.REDIS_SOCKET_TIMEOUT,
                )
                connection.ping()
                queues = create_verification_queues(
                    connection, settings.VERIFY_QUEUE_NAME, settings.VERIFY_JOB_TIMEOUT
                )
                logger.info("verification_queue_ready", queue=settings.VERIFY_QUEUE_NAME)
            except RedisError as e:
                logger.warning("verification_queue_unavailable", error=str(e))
                connection = None
        else:
            logger.info("verification_queue_disabled", reason="REDIS_URL not set")

        return cls(
            service,
            repository,
            queues=queues,
            connection=connection,
            max_attempts=settings.VERIFY_MAX_ATTEMPTS,
            backoff_seconds=settings.VERIFY_BACKOFF_SECONDS,
            job_timeout=settings.VERIFY_JOB_TIMEOUT,
            completed_ttl=settings.COMPLETED_JOB_TTL,
            failed_ttl=settings.FAILED_JOB_TTL,
            poll_url_prefix=f"{settings.api_prefix}/verification-jobs",
        )

    @property
    def is_available(self) -> bool:
        """Whether requests are queued rather than run inline."""
        return self.queues is not None

    def poll_url(self, job_id: str) -> str:
        return f"{self.poll_url_prefix}/{job_id}"

    def submit(self, request: VerificationRequest) -> SyncResult | JobHandle:
        """Queue a verification, or run it now when no queue is available.

        Raises:
            ProvenanceError: In sync mode, if the verification cannot be performed
        """
        if self.queues is not None:
            try:
                return self._enqueue(request, self.queues)
            except RedisError as e:
                logger.warning("enqueue_failed_running_inline", error=str(e))

        SYNC_VERIFICATIONS.labels(type=request.type.value).inc()
        return SyncResult(result=self.service.run(request))

    def _enqueue(
        self, request: VerificationRequest, queues: dict[JobType, Queue]
    ) -> JobHandle:
        job_id = uuid4().hex
        self.repository.create_or_update(
            job_id,
            type=request.type.value,
            content_hash=request.content_hash,
            manifest_uri=request.manifest_uri,
            registry_address=request.registry_address,
            rpc_url=request.rpc_url,
            status=JobStatus.QUEUED.value,
            progress=0,
            retry_count=0,
        )
        try:
            queues[request.type].enqueue(
                process_verification_job,
                request.model_dump(mode="json"),
                job_id=job_id,
                retry=retry_policy(self.max_attempts, self.backoff_seconds),
                job_timeout=self.job_timeout,
                result_ttl=self.completed_ttl,
                failure_ttl=self.failed_ttl,
                meta={"attempts": 0, "progress": 0},
                description=f"{request.type.value} {request.manifest_uri}",
            )
        except RedisError as e:
            self.repository.update(
                job_id,
                status=JobStatus.FAILED.value,
                error=f"Could not enqueue: {e}",
                completed_at=datetime.now(timezone.utc),
            )
            raise
        JOBS_ENQUEUED.labels(type=request.type.value).inc()
        logger.info(
            "verification_queued",
            job_id=job_id,
            type=request.type.value,
            manifest_uri=request.manifest_uri,
        )
        return JobHandle(job_id=job_id, poll_url=self.poll_url(job_id))

    def get_job(self, job_id: str) -> VerificationJob | None:
        """Job record merged with live queue state, or None if unknown."""
        record = self.repository.get(job_id)
        if record is None:
            return None

        state = None
        if self.connection is not None:
            try:
                rq_job = Job.fetch(job_id, connection=self.connection)
                state = rq_job.get_status()
                state = getattr(state, "value", state)
                if record.get("status") not in (
                    JobStatus.COMPLETED.value,
                    JobStatus.FAILED.value,
                ):
                    record["progress"] = rq_job.meta.get("progress", record.get("progress"))
            except NoSuchJobError:
                logger.debug("job_expired_from_queue", job_id=job_id)
            except RedisError as e:
                logger.warning("job_state_unavailable", job_id=job_id, error=str(e))
        return VerificationJob.from_record(record, state=state)

    def list_jobs(
        self, status: str | None = None, limit: int = 50, offset: int = 0
    ) -> list[VerificationJob]:
        return [
            VerificationJob.from_record(record)
            for record in self.repository.list_jobs(status, limit, offset)
        ]

    def stats(self) -> dict[str, Any]:
        """Queue depth and job counts."""
        counts = self.repository.count_by_status()
        stats: dict[str, Any] = {
            "available": self.is_available,
            "mode": "async" if self.is_available else "sync",
            "waiting": counts.get(JobStatus.QUEUED.value, 0),
            "active": counts.get(JobStatus.PROCESSING.value, 0),
            "completed": counts.get(JobStatus.COMPLETED.value, 0),
            "failed": counts.get(JobStatus.FAILED.value, 0),
        }
        if self.queues is not None:
            try:
                stats["queues"] = {
                    job_type.value: {
                        "waiting": queue.count,
                        "active": queue.started_job_registry.count,
                        "scheduled": queue.scheduled_job_registry.count,
                        "failed": queue.failed_job_registry.count,
                    }
                    for job_type, queue in self.queues.items()
                }
                QUEUE_SIZE.set(sum(q["waiting"] for q in stats["queues"].values()))
            except RedisError as e:
                logger.warning("queue_stats_unavailable", error=str(e))
        return stats

    def prune_jobs(self, now: datetime | None = None) -> int:
        """Delete job records past their retention windows."""
        now = now or datetime.now(timezone.utc)
        deleted = self.repository.prune(
            completed_before=now - timedelta(seconds=self.completed_ttl),
            failed_before=now - timedelta(seconds=self.failed_ttl),
        )
        if deleted:
            logger.info("jobs_pruned", count=deleted)
        return deleted

    def close(self) -> None:
        self.service.close()
        if self.connection is not None:
            self.connection.close()
