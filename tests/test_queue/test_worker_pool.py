"""Tests for the verification worker."""

from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from provenance.queue.worker import VerificationWorker


@pytest.fixture
def connection() -> MagicMock:
    return MagicMock()


class TestVerificationWorker:
    """Worker setup and dispatch."""

    def test_should_listen_on_verify_before_proof(self, connection):
        worker = VerificationWorker(connection, queue_name="verification")

        assert [q.name for q in worker.queues] == [
            "verification:verify",
            "verification:proof",
        ]

    def test_should_require_at_least_one_worker(self, connection):
        assert VerificationWorker(connection, num_workers=0).num_workers == 1

    def test_should_fail_setup_when_redis_unreachable(self, connection):
        connection.ping.side_effect = RedisConnectionError("refused")

        with pytest.raises(RuntimeError):
            VerificationWorker(connection).setup()

    def test_should_run_single_worker_with_scheduler(self, mocker, connection):
        worker_class = mocker.patch("provenance.queue.worker.Worker")
        mocker.patch("provenance.queue.worker.signal.signal")
        worker = VerificationWorker(connection, num_workers=1)

        worker.work(burst=True)

        worker_class.assert_called_once_with(worker.queues, connection=connection)
        worker_class.return_value.work.assert_called_once_with(
            burst=True, with_scheduler=True, logging_level="INFO"
        )

    def test_should_start_pool_for_many_workers(self, mocker, connection):
        pool_class = mocker.patch("provenance.queue.worker.WorkerPool")
        worker = VerificationWorker(connection, num_workers=3)

        worker.work()

        pool_class.assert_called_once_with(
            worker.queues, connection=connection, num_workers=3
        )
        pool_class.return_value.start.assert_called_once_with(
            burst=False, logging_level="INFO"
        )

    def test_should_report_status(self, connection):
        status = VerificationWorker(connection, num_workers=2).get_status()

        assert status["num_workers"] == 2
        assert status["shutdown_requested"] is False
        assert len(status["queues"]) == 2
