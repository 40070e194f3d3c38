"""Job processor for RQ."""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any
from uuid import uuid4

from rq import get_current_job
from rq.job import Job

from provenance.core.config import settings
from provenance.core.errors import ValidationError, is_retryable
from provenance.core.logging import get_job_logger
from provenance.core.metrics import JOBS_COMPLETED, JOBS_FAILED
from provenance.queue.retry import will_retry
from provenance.queue.types import JobStatus
from provenance.storage.database import get_session_factory
from provenance.storage.ledger import JobRepository
from provenance.verification.models import VerificationRequest
from provenance.verification.service import VerificationService, discard_upload


@lru_cache(maxsize=1)
def build_verification_service() -> VerificationService:
    """Service shared by every job run in this worker process."""
    return VerificationService.from_settings(settings)


@lru_cache(maxsize=1)
def build_job_repository() -> JobRepository:
    return JobRepository(
        get_session_factory(settings.DATABASE_URL, settings.MAX_CONNECTIONS)
    )


def _attempts_made(rq_job: Job | None) -> int:
    if rq_job is None:
        return 0
    return int(rq_job.meta.get("attempts", 0))


def process_verification_job(
    request_data: dict[str, Any],
    service: VerificationService | None = None,
    repository: JobRepository | None = None,
) -> dict[str, Any]:
    """Run one attempt of a verification job.

    The job record is created or updated on every attempt. A failure that
    will be retried leaves the record ``queued`` with the error; the last
    failed attempt marks it ``failed``. Errors that cannot succeed on retry
    cancel the remaining attempts.

    Args:
        request_data: Serialized ``VerificationRequest``
        service: Verification service (defaults to the process-wide one)
        repository: Job repository (defaults to the process-wide one)

    Returns:
        Wire form of the verdict or proof document
    """
    service = service or build_verification_service()
    repository = repository or build_job_repository()

    rq_job = get_current_job()
    job_id = rq_job.id if rq_job is not None else uuid4().hex
    attempts = _attempts_made(rq_job)
    log = get_job_logger(job_id).bind(attempt=attempts + 1)

    if rq_job is not None:
        rq_job.meta["attempts"] = attempts + 1
        rq_job.meta["progress"] = 0
        rq_job.save_meta()

    try:
        request = VerificationRequest.build(**request_data)
    except ValidationError:
        if rq_job is not None:
            rq_job.retries_left = 0
        raise
    job_type = request.type.value
    repository.create_or_update(
        job_id,
        type=job_type,
        content_hash=request.content_hash,
        manifest_uri=request.manifest_uri,
        registry_address=request.registry_address,
        rpc_url=request.rpc_url,
        status=JobStatus.PROCESSING.value,
        progress=0,
        error=None,
        retry_count=attempts,
        started_at=datetime.now(timezone.utc),
    )
    log.info("job_started", type=job_type)

    def report(percent: int, **fields: Any) -> None:
        if rq_job is not None:
            rq_job.meta["progress"] = percent
            rq_job.save_meta()
        repository.update(job_id, progress=percent, **fields)

    try:
        outcome = service.run(request, progress=report)
    except Exception as exc:
        retries_left = rq_job.retries_left if rq_job is not None else 0
        retryable = is_retryable(exc)
        if not retryable and rq_job is not None:
            # Malformed input fails the same way every time
            rq_job.retries_left = 0
        JOBS_FAILED.labels(type=job_type, retryable=str(retryable).lower()).inc()

        if will_retry(exc, retries_left):
            repository.update(job_id, status=JobStatus.QUEUED.value, error=str(exc))
            log.warning(
                "job_attempt_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                retries_left=retries_left,
            )
        else:
            repository.update(
                job_id,
                status=JobStatus.FAILED.value,
                error=str(exc),
                completed_at=datetime.now(timezone.utc),
            )
            log.error("job_failed", error=str(exc), error_type=type(exc).__name__)
            discard_upload(request)
        raise

    result = outcome.to_wire()
    repository.update(
        job_id,
        status=JobStatus.COMPLETED.value,
        progress=100,
        result=result,
        error=None,
        completed_at=datetime.now(timezone.utc),
    )
    JOBS_COMPLETED.labels(type=job_type).inc()
    discard_upload(request)
    log.info("job_completed", status=outcome.status.value)
    return result
