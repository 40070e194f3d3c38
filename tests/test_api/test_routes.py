"""Tests for the HTTP API."""

from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from provenance.core.config import Settings, settings
from provenance.core.errors import FetchError, NotFoundError
from provenance.main import create_app
from provenance.queue.pipeline import VerificationPipeline
from provenance.queue.types import JobType
from provenance.storage.ledger import JobRepository
from provenance.verification.models import CrossChainRegistryEntry
from provenance.verification.service import HashLookup
from provenance.verification.verdict import build_proof, compute_verdict

API = "/api/v1"


@pytest.fixture
def verdict(manifest, registered_entry, content_hash, manifest_uri):
    return compute_verdict(content_hash, manifest, registered_entry, manifest_uri)


@pytest.fixture
def service(verdict) -> MagicMock:
    service = MagicMock()
    service.run.return_value = verdict
    service.cache.is_available.return_value = False
    return service


@pytest.fixture
def repository(session_factory) -> JobRepository:
    return JobRepository(session_factory)


@pytest.fixture
def queues() -> dict[JobType, MagicMock]:
    return {JobType.VERIFY: MagicMock(), JobType.PROOF: MagicMock()}


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    return tmp_path / "uploads"


def _client(pipeline: VerificationPipeline) -> TestClient:
    app = create_app()
    app.state.pipeline = pipeline
    return TestClient(app)


@pytest.fixture
def sync_client(service, repository):
    with _client(VerificationPipeline(service, repository)) as client:
        yield client


@pytest.fixture
def async_client(service, repository, queues):
    pipeline = VerificationPipeline(service, repository, queues=queues)
    with _client(pipeline) as client:
        yield client


@pytest.fixture
def cross_chain_entry(registered_entry) -> CrossChainRegistryEntry:
    return CrossChainRegistryEntry(
        **registered_entry.model_dump(), chain_id=84532, registry_address="0x" + "01" * 20
    )


class TestSubmitVerification:
    """POST /verification-jobs/verify and /proof."""

    def test_should_return_verdict_inline_in_sync_mode(
        self, sync_client, service, content_hash, manifest_uri, verdict
    ):
        response = sync_client.post(
            f"{API}/verification-jobs/verify",
            data={"content_hash": content_hash, "manifest_uri": manifest_uri},
        )

        assert response.status_code == 200
        assert response.json() == {"mode": "sync", "result": verdict.to_wire()}
        request = service.run.call_args.args[0]
        assert request.content_hash == content_hash
        assert request.registry_address is None

    def test_should_accept_job_in_async_mode(
        self, async_client, queues, content_hash, manifest_uri, registry_address
    ):
        response = async_client.post(
            f"{API}/verification-jobs/verify",
            data={
                "content_hash": content_hash,
                "manifest_uri": manifest_uri,
                "registry_address": registry_address,
            },
        )

        assert response.status_code == 202
        body = response.json()
        assert body["mode"] == "async"
        assert body["status"] == "queued"
        assert body["pollUrl"] == f"{API}/verification-jobs/{body['jobId']}"
        queues[JobType.VERIFY].enqueue.assert_called_once()

        polled = async_client.get(body["pollUrl"])
        assert polled.status_code == 200
        assert polled.json()["status"] == "queued"
        assert polled.json()["registryAddress"] == registry_address

    def test_should_hash_upload_and_discard_it(
        self, sync_client, service, upload_dir, manifest_uri, content
    ):
        seen = {}

        def run(request):
            seen["exists"] = Path(request.source.path).read_bytes() == content
            return service.run.return_value

        service.run.side_effect = run

        response = sync_client.post(
            f"{API}/verification-jobs/verify",
            data={"manifest_uri": manifest_uri},
            files={"file": ("photo.jpg", content, "image/jpeg")},
        )

        assert response.status_code == 200
        assert seen["exists"]
        assert list(upload_dir.iterdir()) == []

    def test_should_keep_upload_for_queued_job(
        self, async_client, queues, upload_dir, manifest_uri, content
    ):
        response = async_client.post(
            f"{API}/verification-jobs/proof",
            data={"manifest_uri": manifest_uri},
            files={"file": ("photo.jpg", content, "image/jpeg")},
        )

        assert response.status_code == 202
        request_data = queues[JobType.PROOF].enqueue.call_args.args[1]
        assert request_data["type"] == "proof"
        assert request_data["source"]["filename"] == "photo.jpg"
        assert request_data["source"]["delete_after"] is True
        assert len(list(upload_dir.iterdir())) == 1

    def test_should_return_proof_document(
        self, sync_client, service, verdict, manifest, content_hash, manifest_uri
    ):
        proof = build_proof(
            verdict,
            manifest,
            manifest_uri,
            chain_id=84532,
            generated_at=datetime(2024, 5, 2),
        )
        service.run.return_value = proof

        response = sync_client.post(
            f"{API}/verification-jobs/proof",
            data={"content_hash": content_hash, "manifest_uri": manifest_uri},
        )

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["network"] == {"chainId": 84532}
        assert result["verification"]["status"] == "OK"

    def test_should_require_file_or_hash(self, sync_client, manifest_uri):
        response = sync_client.post(
            f"{API}/verification-jobs/verify", data={"manifest_uri": manifest_uri}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_should_reject_malformed_hash(self, sync_client, manifest_uri):
        response = sync_client.post(
            f"{API}/verification-jobs/verify",
            data={"content_hash": "0x1234", "manifest_uri": manifest_uri},
        )

        assert response.status_code == 400

    def test_should_reject_unsupported_manifest_scheme(self, sync_client, content_hash):
        response = sync_client.post(
            f"{API}/verification-jobs/verify",
            data={"content_hash": content_hash, "manifest_uri": "ftp://example/m.json"},
        )

        assert response.status_code == 400

    def test_should_require_manifest_uri(self, sync_client, content_hash):
        response = sync_client.post(
            f"{API}/verification-jobs/verify", data={"content_hash": content_hash}
        )

        assert response.status_code == 422

    def test_should_map_transport_failures_to_bad_gateway(
        self, sync_client, service, content_hash, manifest_uri
    ):
        service.run.side_effect = FetchError("Timed out fetching manifest")

        response = sync_client.post(
            f"{API}/verification-jobs/verify",
            data={"content_hash": content_hash, "manifest_uri": manifest_uri},
        )

        assert response.status_code == 502
        assert response.json()["message"] == "Timed out fetching manifest"


class TestJobEndpoints:
    """Job polling, listing and stats."""

    def test_should_return_404_for_unknown_job(self, sync_client):
        response = sync_client.get(f"{API}/verification-jobs/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_should_list_jobs(self, async_client, content_hash, manifest_uri):
        for _ in range(2):
            async_client.post(
                f"{API}/verification-jobs/verify",
                data={"content_hash": content_hash, "manifest_uri": manifest_uri},
            )

        response = async_client.get(f"{API}/verification-jobs", params={"status": "queued"})

        assert response.status_code == 200
        assert response.json()["count"] == 2

    def test_should_reject_unknown_status_filter(self, sync_client):
        response = sync_client.get(f"{API}/verification-jobs", params={"status": "lost"})

        assert response.status_code == 422

    def test_should_report_stats(self, sync_client):
        response = sync_client.get(f"{API}/verification-jobs/stats")

        assert response.status_code == 200
        assert response.json()["mode"] == "sync"


class TestRegistryLookups:
    """GET /verify/platform and /verify/hash."""

    def test_should_resolve_platform_url(self, sync_client, service, cross_chain_entry):
        service.resolve_binding.return_value = cross_chain_entry

        response = sync_client.get(
            f"{API}/verify/platform",
            params={"url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["platform"] == "youtube"
        assert body["platformId"] == "dQw4w9WgXcQ"
        assert body["chainId"] == 84532
        assert body["chainName"] == "Base Sepolia"
        assert body["explorerUrl"].startswith("https://sepolia.basescan.org/address/")
        service.resolve_binding.assert_called_once_with("youtube", "dQw4w9WgXcQ")

    def test_should_return_404_for_unbound_post(self, sync_client, service):
        service.resolve_binding.side_effect = NotFoundError("No binding found")

        response = sync_client.get(
            f"{API}/verify/platform", params={"platform": "x", "platform_id": "1"}
        )

        assert response.status_code == 404

    def test_should_require_platform_input(self, sync_client):
        response = sync_client.get(f"{API}/verify/platform")

        assert response.status_code == 400

    def test_should_look_up_hash(
        self, sync_client, service, cross_chain_entry, manifest, content_hash
    ):
        service.lookup_hash.return_value = HashLookup(
            entry=cross_chain_entry,
            manifest=manifest,
            last_verification={
                "status": "OK",
                "verification_count": 3,
                "updated_at": datetime(2024, 5, 2, 8, 30),
            },
        )

        response = sync_client.get(f"{API}/verify/hash/{content_hash}")

        assert response.status_code == 200
        body = response.json()
        assert body["contentHash"] == content_hash
        assert body["manifest"]["signature"] == manifest.signature
        assert body["lastVerification"] == {
            "status": "OK",
            "verificationCount": 3,
            "updatedAt": "2024-05-02T08:30:00",
        }
        assert body["txHash"] is None
        assert body["explorerTxUrl"] is None

    def test_should_link_registration_tx_on_explorer(
        self, sync_client, service, cross_chain_entry, content_hash
    ):
        tx_hash = "0x" + "cd" * 32
        service.lookup_hash.return_value = HashLookup(entry=cross_chain_entry, tx_hash=tx_hash)

        body = sync_client.get(f"{API}/verify/hash/{content_hash}").json()

        assert body["txHash"] == tx_hash
        assert body["explorerTxUrl"] == f"https://sepolia.basescan.org/tx/{tx_hash}"
        assert body["manifest"] is None
        assert "lastVerification" not in body


class TestApplication:
    """Health, metrics and correlation IDs."""

    def test_should_report_health(self, sync_client):
        response = sync_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["mode"] == "sync"
        assert body["cache"] is False

    def test_should_echo_valid_request_id(self, sync_client):
        request_id = "6f1c2a8e-3b4d-4c5e-9f60-718293a4b5c6"

        response = sync_client.get("/health", headers={"X-Request-ID": request_id})

        assert response.headers["X-Request-ID"] == request_id
        assert response.json()["correlation_id"] == request_id

    def test_should_replace_invalid_request_id(self, sync_client):
        response = sync_client.get("/health", headers={"X-Request-ID": "not-a-uuid"})

        assert response.headers["X-Request-ID"] != "not-a-uuid"

    def test_should_expose_prometheus_metrics(self, sync_client):
        sync_client.get("/health")

        response = sync_client.get("/metrics")

        assert response.status_code == 200
        assert "provenance_http_requests_total" in response.text


class TestApplicationLifespan:
    """Pipeline construction from the settings given to ``create_app``."""

    @pytest.fixture
    def app_settings(self, tmp_path) -> Settings:
        return Settings(
            VERIFY_MAX_ATTEMPTS=7,
            DATABASE_URL=f"sqlite:///{tmp_path / 'jobs.db'}",
            REDIS_URL="",
            JSON_LOGS=False,
        )

    def test_should_build_pipeline_from_given_settings(self, app_settings, tmp_path):
        app = create_app(app_settings)

        with TestClient(app) as client:
            pipeline = app.state.pipeline
            assert pipeline.max_attempts == 7
            assert not pipeline.is_available
            assert client.get("/health").json()["mode"] == "sync"

        assert (tmp_path / "jobs.db").exists()

    def test_should_close_pipeline_on_shutdown(self, app_settings):
        app = create_app(app_settings)

        with TestClient(app):
            assert app.state.pipeline is not None

        assert app.state.pipeline is None

    def test_should_keep_preset_pipeline(self, service, repository):
        pipeline = VerificationPipeline(service, repository)
        app = create_app()
        app.state.pipeline = pipeline

        with TestClient(app):
            assert app.state.pipeline is pipeline

        service.close.assert_called_once()
