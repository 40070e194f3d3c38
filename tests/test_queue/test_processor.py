"""Tests for the RQ job processor."""

from datetime import timezone
from unittest.mock import MagicMock

import pytest

from provenance.core.errors import FetchError, ParseError, ValidationError
from provenance.queue.processor import process_verification_job
from provenance.storage.ledger import JobRepository, VerificationLedger
from provenance.verification.models import ByFile, VerificationRequest
from provenance.verification.verdict import compute_verdict


@pytest.fixture
def repository(session_factory) -> JobRepository:
    return JobRepository(session_factory)


@pytest.fixture
def verdict(manifest, registered_entry, content_hash, manifest_uri):
    return compute_verdict(content_hash, manifest, registered_entry, manifest_uri)


@pytest.fixture
def service(verdict) -> MagicMock:
    service = MagicMock()
    service.run.return_value = verdict
    return service


@pytest.fixture
def current_job(mocker, mock_rq_job) -> MagicMock:
    mocker.patch("provenance.queue.processor.get_current_job", return_value=mock_rq_job)
    return mock_rq_job


@pytest.fixture
def request_data(content_hash, manifest_uri, registry_address) -> dict:
    return {
        "type": "verify",
        "source": {"kind": "hash", "content_hash": content_hash},
        "manifest_uri": manifest_uri,
        "target": {"kind": "single", "registry_address": registry_address},
    }


def _run(request_data, service, repository):
    return process_verification_job(request_data, service=service, repository=repository)


class TestProcessVerificationJob:
    """One attempt of a queued verification."""

    def test_should_complete_job_and_store_result(
        self, current_job, request_data, service, repository, verdict
    ):
        result = _run(request_data, service, repository)

        assert result == verdict.to_wire()
        record = repository.get("job-1")
        assert record["status"] == "completed"
        assert record["progress"] == 100
        assert record["result"] == verdict.to_wire()
        assert record["retry_count"] == 0
        assert record["started_at"] is not None
        assert record["completed_at"] is not None
        assert current_job.meta["attempts"] == 1

    def test_should_report_progress_to_job_and_record(
        self, current_job, request_data, service, repository, verdict, content_hash
    ):
        seen = []

        def run(request, progress):
            progress(10, content_hash=content_hash)
            seen.append(dict(current_job.meta))
            seen.append(repository.get("job-1"))
            return verdict

        service.run.side_effect = run

        _run(request_data, service, repository)

        assert seen[0]["progress"] == 10
        assert seen[1]["progress"] == 10
        assert seen[1]["content_hash"] == content_hash
        assert seen[1]["status"] == "processing"

    def test_should_count_retries_until_success(
        self, current_job, request_data, service, repository, verdict
    ):
        service.run.side_effect = [
            FetchError("gateway timeout"),
            FetchError("gateway timeout"),
            verdict,
        ]

        for retries_left in (2, 1):
            current_job.retries_left = retries_left
            with pytest.raises(FetchError):
                _run(request_data, service, repository)
            record = repository.get("job-1")
            assert record["status"] == "queued"
            assert record["error"] == "gateway timeout"

        current_job.retries_left = 0
        _run(request_data, service, repository)

        record = repository.get("job-1")
        assert record["status"] == "completed"
        assert record["retry_count"] == 2
        assert record["error"] is None
        assert current_job.meta["attempts"] == 3

    def test_should_fail_after_exhausting_retries(
        self, current_job, request_data, service, repository, session_factory, content_hash
    ):
        service.run.side_effect = FetchError("gateway timeout")

        for retries_left in (2, 1, 0):
            current_job.retries_left = retries_left
            with pytest.raises(FetchError):
                _run(request_data, service, repository)

        record = repository.get("job-1")
        assert record["status"] == "failed"
        assert record["error"] == "gateway timeout"
        assert record["retry_count"] == 2
        assert record["result"] is None
        assert VerificationLedger(session_factory).find_entry(content_hash) is None

    def test_should_cancel_retries_for_fatal_errors(
        self, current_job, request_data, service, repository
    ):
        service.run.side_effect = ParseError("Manifest is not valid JSON")

        with pytest.raises(ParseError):
            _run(request_data, service, repository)

        assert current_job.retries_left == 0
        assert repository.get("job-1")["status"] == "failed"

    def test_should_cancel_retries_for_invalid_request(
        self, current_job, service, repository
    ):
        with pytest.raises(ValidationError):
            _run({"source": {"kind": "hash", "content_hash": "0x12"}}, service, repository)

        assert current_job.retries_left == 0
        service.run.assert_not_called()

    def test_should_remove_upload_once_final(
        self, current_job, service, repository, tmp_path, manifest_uri
    ):
        path = tmp_path / "upload"
        path.write_bytes(b"data")
        request = VerificationRequest(
            source=ByFile(path=str(path), delete_after=True), manifest_uri=manifest_uri
        )

        _run(request.model_dump(mode="json"), service, repository)

        assert not path.exists()

    def test_should_keep_upload_while_retrying(
        self, current_job, service, repository, tmp_path, manifest_uri
    ):
        path = tmp_path / "upload"
        path.write_bytes(b"data")
        request = VerificationRequest(
            source=ByFile(path=str(path), delete_after=True), manifest_uri=manifest_uri
        )
        service.run.side_effect = FetchError("gateway timeout")

        with pytest.raises(FetchError):
            _run(request.model_dump(mode="json"), service, repository)

        assert path.exists()

    def test_should_run_outside_a_worker(self, mocker, request_data, service, repository):
        mocker.patch("provenance.queue.processor.get_current_job", return_value=None)

        result = _run(request_data, service, repository)

        assert result["status"] == "OK"
        assert repository.list_jobs()[0]["status"] == "completed"

    def test_should_record_timestamps_in_utc(self, current_job, request_data, service):
        repository = MagicMock(spec=JobRepository)

        _run(request_data, service, repository)

        started_at = repository.create_or_update.call_args.kwargs["started_at"]
        completed_at = repository.update.call_args.kwargs["completed_at"]
        assert started_at.tzinfo == timezone.utc
        assert completed_at.tzinfo == timezone.utc
        assert completed_at >= started_at
