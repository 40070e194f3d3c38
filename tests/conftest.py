"""Test configuration."""

import os

# Settings are read at import time
os.environ["TESTING"] = "true"
os.environ["REDIS_URL"] = ""
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("REGISTRY_DEPLOYMENTS", None)

from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from pytest import Config
from sqlalchemy.orm import Session, sessionmaker

from provenance.core.logging import configure_logging
from provenance.storage.database import create_db_engine, init_db
from provenance.verification.hasher import sha256_hex
from provenance.verification.manifest import Manifest
from provenance.verification.models import RegistryEntry

CREATOR_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32

CONTENT = b"an original photograph"
MANIFEST_URI = "ipfs://bafkreimanifest"
REGISTRY_ADDRESS = "0x" + "ab" * 20


def pytest_configure(config: Config) -> None:
    """Configure logging for the test run."""
    configure_logging(testing=True)
    config.addinivalue_line("markers", "integration: mark test as an integration test")


def sign_hash(content_hash: str, private_key: str = CREATOR_KEY) -> str:
    """Sign the raw bytes of a content hash the way creators do."""
    signed = Account.from_key(private_key).sign_message(encode_defunct(hexstr=content_hash))
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture
def creator() -> str:
    """Checksum address of the registering creator."""
    return Account.from_key(CREATOR_KEY).address


@pytest.fixture
def content() -> bytes:
    return CONTENT


@pytest.fixture
def content_hash() -> str:
    return sha256_hex(CONTENT)


@pytest.fixture
def make_manifest(content_hash: str) -> Callable[..., Manifest]:
    """Build a signed manifest; override any field via keyword arguments."""

    def _make(private_key: str = CREATOR_KEY, **overrides: Any) -> Manifest:
        declared = overrides.pop("content_hash", content_hash)
        data = {
            "version": "1.0",
            "algorithm": "sha256",
            "content_hash": declared,
            "creator_did": "did:pkh:eip155:84532:creator",
            "created_at": "2024-05-01T12:00:00Z",
            "signature": sign_hash(declared, private_key),
            "attestations": [],
        }
        data.update(overrides)
        return Manifest.model_validate(data)

    return _make


@pytest.fixture
def manifest(make_manifest: Callable[..., Manifest]) -> Manifest:
    return make_manifest()


@pytest.fixture
def registered_entry(creator: str, content_hash: str) -> RegistryEntry:
    return RegistryEntry(
        creator=creator,
        content_hash=content_hash,
        manifest_uri=MANIFEST_URI,
        timestamp=1714564800,
    )


@pytest.fixture
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    """Fresh in-memory database per test."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def mock_rq_job() -> MagicMock:
    """Stand-in for the job RQ passes to a running task."""
    job = MagicMock()
    job.id = "job-1"
    job.meta = {"attempts": 0, "progress": 0}
    job.retries_left = 2
    return job


@pytest.fixture
def sign() -> Callable[..., str]:
    return sign_hash


@pytest.fixture
def other_key() -> str:
    return OTHER_KEY


@pytest.fixture
def manifest_uri() -> str:
    return MANIFEST_URI


@pytest.fixture
def registry_address() -> str:
    return REGISTRY_ADDRESS
