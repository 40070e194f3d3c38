"""Retry policy for verification jobs."""

from rq import Retry

from provenance.core.errors import is_retryable


def backoff_intervals(
    max_attempts: int, base_delay: int = 5, backoff_factor: int = 2
) -> list[int]:
    """Delays before each retry, doubling from ``base_delay``.

    ``max_attempts`` counts the first run, so there is one delay fewer.

    >>> backoff_intervals(3)
    [5, 10]
    """
    return [base_delay * backoff_factor**n for n in range(max(0, max_attempts - 1))]


def retry_policy(max_attempts: int, base_delay: int = 5) -> Retry | None:
    """RQ retry policy for a job, or None when only one attempt is allowed."""
    intervals = backoff_intervals(max_attempts, base_delay)
    if not intervals:
        return None
    return Retry(max=len(intervals), interval=intervals)


def will_retry(exc: BaseException, retries_left: int | None) -> bool:
    """Whether a failed attempt will be run again."""
    return is_retryable(exc) and (retries_left or 0) > 0
