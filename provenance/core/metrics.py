"""Prometheus metrics."""

from prometheus_client import Counter, Gauge, Histogram

# HTTP
REQUESTS_TOTAL = Counter(
    "provenance_http_requests_total",
    "Total number of HTTP requests",
    labelnames=["method", "path"],
)

RESPONSES_TOTAL = Counter(
    "provenance_http_responses_total",
    "Total number of HTTP responses",
    labelnames=["status_code"],
)

# Verification
VERDICTS_TOTAL = Counter(
    "provenance_verdicts_total",
    "Verdicts computed",
    ["type", "status"],  # status: OK, WARN, FAIL
)

STAGE_SECONDS = Histogram(
    "provenance_verification_stage_seconds",
    "Time spent in each verification stage",
    ["stage"],  # hash, manifest, signature, onchain, proof, persist
)

# Job pipeline
JOBS_ENQUEUED = Counter(
    "provenance_jobs_enqueued_total",
    "Verification jobs accepted onto the queue",
    ["type"],
)

JOBS_COMPLETED = Counter(
    "provenance_jobs_completed_total",
    "Verification jobs completed",
    ["type"],
)

JOBS_FAILED = Counter(
    "provenance_jobs_failed_total",
    "Verification job attempts that failed",
    ["type", "retryable"],
)

SYNC_VERIFICATIONS = Counter(
    "provenance_sync_verifications_total",
    "Verifications run inline because no queue is available",
    ["type"],
)

QUEUE_SIZE = Gauge(
    "provenance_queue_size",
    "Jobs waiting in the verification queues",
)

# Cache
CACHE_OPERATIONS = Counter(
    "provenance_cache_operations_total",
    "Cache operations by key kind",
    ["kind", "op", "result"],  # kind: binding, manifest, other; result: hit, miss, ok, error
)
