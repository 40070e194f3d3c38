"""Verification service: one unit of verification work, end to end."""

import os
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from provenance.core.chains import load_deployments
from provenance.core.config import Settings
from provenance.core.errors import FetchError, NotFoundError, ParseError
from provenance.core.logging import get_logger
from provenance.core.metrics import STAGE_SECONDS, VERDICTS_TOTAL
from provenance.storage.cache import CacheService, binding_key
from provenance.storage.database import get_session_factory
from provenance.storage.ledger import VerificationLedger, VerificationRecord
from provenance.verification.hasher import (
    normalize_content_hash,
    sha256_hex_from_file,
)
from provenance.verification.manifest import Manifest, ManifestFetcher
from provenance.verification.models import (
    ByFile,
    CrossChainRegistryEntry,
    RegistryEntry,
    SingleChain,
    VerificationOutcome,
    VerificationRequest,
    VerificationType,
)
from provenance.verification.registry import RegistryClientFactory
from provenance.verification.resolver import CrossChainResolver
from provenance.verification.verdict import build_proof, compute_verdict, recover_signer

logger = get_logger(__name__)

# Progress checkpoints
PROGRESS_HASHED = 10
PROGRESS_MANIFEST = 30
PROGRESS_SIGNATURE = 50
PROGRESS_ONCHAIN = 70
PROGRESS_PROOF = 85
PROGRESS_PERSISTED = 90
PROGRESS_DONE = 100

ProgressCallback = Callable[..., None]


def _no_progress(percent: int, **fields: Any) -> None:
    pass


def discard_upload(request: VerificationRequest) -> None:
    """Remove an uploaded temp file once its verification is final."""
    source = request.source
    if not (isinstance(source, ByFile) and source.delete_after):
        return
    try:
        os.remove(source.path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("upload_cleanup_failed", path=source.path, error=str(e))


@dataclass
class _Lookup:
    entry: RegistryEntry
    registry_address: str | None
    rpc_url: str | None
    chain_id: int | None


@dataclass(frozen=True)
class HashLookup:
    """On-chain entry for a content hash plus what else is known about it."""

    entry: CrossChainRegistryEntry
    manifest: Manifest | None = None
    last_verification: dict[str, Any] | None = None
    tx_hash: str | None = None


class VerificationService:
    """Runs the hash, fetch, recover, lookup and persist stages in order.

    Network clients are shared and read-only, so one service instance is
    safe to use from concurrent workers.
    """

    def __init__(
        self,
        fetcher: ManifestFetcher,
        registry_factory: RegistryClientFactory,
        resolver: CrossChainResolver,
        ledger: VerificationLedger | None = None,
        cache: CacheService | None = None,
        binding_ttl: int = 3 * 60,
    ) -> None:
        self.fetcher = fetcher
        self.registry_factory = registry_factory
        self.resolver = resolver
        self.ledger = ledger
        self.cache = cache or CacheService(None)
        self.binding_ttl = binding_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "VerificationService":
        """Wire the service and its collaborators from settings."""
        cache = CacheService.from_url(
            settings.REDIS_URL, socket_timeout=settings.REDIS_SOCKET_TIMEOUT
        )
        fetcher = ManifestFetcher(
            gateway=settings.IPFS_GATEWAY,
            timeout=settings.MANIFEST_FETCH_TIMEOUT,
            max_bytes=settings.MANIFEST_MAX_BYTES,
            cache=cache,
            cache_ttl=settings.CACHE_TTL_MANIFEST,
        )
        factory = RegistryClientFactory(
            default_rpc_url=settings.RPC_URL,
            timeout=settings.RPC_TIMEOUT,
            start_block=settings.REGISTRY_START_BLOCK,
            block_window=settings.LOG_SCAN_BLOCK_WINDOW,
        )
        resolver = CrossChainResolver(load_deployments(settings), factory)
        ledger = VerificationLedger(
            get_session_factory(settings.DATABASE_URL, settings.MAX_CONNECTIONS)
        )
        return cls(
            fetcher,
            factory,
            resolver,
            ledger=ledger,
            cache=cache,
            binding_ttl=settings.CACHE_TTL_PLATFORM_BINDING,
        )

    def close(self) -> None:
        self.fetcher.close()
        self.cache.close()

    def compute_hash(self, request: VerificationRequest) -> str:
        if isinstance(request.source, ByFile):
            return sha256_hex_from_file(request.source.path)
        return request.source.content_hash

    def run(
        self,
        request: VerificationRequest,
        progress: ProgressCallback | None = None,
    ) -> VerificationOutcome:
        """Verify content against its manifest and the registry.

        Args:
            request: Validated verification request
            progress: Called as ``progress(percent, **fields)`` at each checkpoint

        Returns:
            A ``Verdict`` for verify requests or a ``ProofDocument`` for proofs

        Raises:
            ProvenanceError: If any lookup could not be performed
        """
        progress = progress or _no_progress
        log = logger.bind(type=request.type.value, manifest_uri=request.manifest_uri)

        with STAGE_SECONDS.labels(stage="hash").time():
            file_hash = self.compute_hash(request)
        progress(PROGRESS_HASHED, content_hash=file_hash)
        log = log.bind(content_hash=file_hash)

        with STAGE_SECONDS.labels(stage="manifest").time():
            manifest = self.fetcher.fetch(request.manifest_uri)
        progress(PROGRESS_MANIFEST)

        with STAGE_SECONDS.labels(stage="signature").time():
            recovered = recover_signer(manifest.content_hash, manifest.signature)
        progress(PROGRESS_SIGNATURE)

        with STAGE_SECONDS.labels(stage="onchain").time():
            lookup = self._lookup_entry(request, file_hash)
        progress(PROGRESS_ONCHAIN)

        verdict = compute_verdict(
            file_hash,
            manifest,
            lookup.entry,
            request.manifest_uri,
            recovered_signer=recovered,
        )
        VERDICTS_TOTAL.labels(type=request.type.value, status=verdict.status.value).inc()
        log.info(
            "verdict_computed",
            status=verdict.status.value,
            reasons=verdict.reasons,
            chain_id=lookup.chain_id,
        )

        result: VerificationOutcome = verdict
        if request.type == VerificationType.PROOF:
            progress(PROGRESS_PROOF)
            with STAGE_SECONDS.labels(stage="proof").time():
                result = self._build_proof(request, manifest, verdict, lookup)

        with STAGE_SECONDS.labels(stage="persist").time():
            self._record(
                VerificationRecord(
                    content_hash=file_hash,
                    manifest_uri=request.manifest_uri,
                    recovered_address=recovered.lower(),
                    creator_onchain=lookup.entry.creator.lower(),
                    status=verdict.status.value,
                )
            )
        progress(PROGRESS_PERSISTED)
        progress(PROGRESS_DONE)
        return result

    def _lookup_entry(self, request: VerificationRequest, file_hash: str) -> _Lookup:
        if isinstance(request.target, SingleChain):
            client = self.registry_factory.get(request.target.rpc_url)
            entry = client.get_entry(request.target.registry_address, file_hash)
            return _Lookup(
                entry=entry,
                registry_address=request.target.registry_address,
                rpc_url=request.target.rpc_url,
                chain_id=None,
            )

        found = self.resolver.resolve_entry(file_hash)
        if found is None:
            return _Lookup(
                entry=RegistryEntry.empty(file_hash),
                registry_address=None,
                rpc_url=None,
                chain_id=None,
            )
        deployment = self.resolver.deployment_for(found.chain_id)
        return _Lookup(
            entry=found,
            registry_address=found.registry_address,
            rpc_url=deployment.rpc_url if deployment else None,
            chain_id=found.chain_id,
        )

    def _build_proof(self, request, manifest, verdict, lookup):
        chain_id = lookup.chain_id
        tx_hash = None
        if lookup.registry_address is not None:
            client = self.registry_factory.get(lookup.rpc_url)
            if chain_id is None:
                chain_id = client.chain_id
            if not lookup.entry.is_empty:
                tx_hash = client.find_registration_tx(
                    lookup.registry_address, verdict.file_hash
                )
        filename = request.source.filename if isinstance(request.source, ByFile) else None
        return build_proof(
            verdict,
            manifest,
            request.manifest_uri,
            chain_id=chain_id,
            registry_address=lookup.registry_address,
            tx_hash=tx_hash,
            filename=filename,
        )

    def _record(self, record: VerificationRecord) -> None:
        if self.ledger is None:
            return
        try:
            self.ledger.upsert(record)
        except SQLAlchemyError as e:
            # The verdict stands even if the audit row cannot be written
            logger.warning(
                "ledger_write_failed", content_hash=record.content_hash, error=str(e)
            )

    def resolve_binding(self, platform: str, platform_id: str) -> CrossChainRegistryEntry:
        """Resolve a platform binding across all configured chains.

        Found bindings are cached briefly; misses are not cached.

        Raises:
            NotFoundError: If no chain has the binding
            RpcError: If a chain was unreachable and none had the binding
        """
        cached = self.cache.get_or_set(
            binding_key(platform, platform_id),
            lambda: self.resolver.resolve_binding(platform, platform_id),
            ttl=self.binding_ttl,
            serialize=lambda entry: entry.model_dump(mode="json", by_alias=True),
            should_cache=lambda entry: entry is not None,
        )
        if cached is None:
            raise NotFoundError(f"No binding found for {platform}:{platform_id}")
        if isinstance(cached, CrossChainRegistryEntry):
            return cached
        return CrossChainRegistryEntry.model_validate(cached)

    def lookup_hash(self, content_hash: str) -> HashLookup:
        """Find the registry entry for a content hash on any chain.

        The manifest it points to and the registration transaction are
        looked up best-effort.

        Raises:
            ValidationError: If the hash is malformed
            NotFoundError: If no chain has an entry
        """
        content_hash = normalize_content_hash(content_hash)
        entry = self.resolver.resolve_entry(content_hash)
        if entry is None:
            raise NotFoundError(f"No registry entry for {content_hash}")

        manifest = None
        if entry.manifest_uri:
            try:
                manifest = self.fetcher.fetch_cached(entry.manifest_uri)
            except (FetchError, ParseError) as e:
                logger.info(
                    "manifest_unavailable", manifest_uri=entry.manifest_uri, error=str(e)
                )

        last = None
        if self.ledger is not None:
            try:
                last = self.ledger.find_entry(content_hash)
            except SQLAlchemyError as e:
                logger.warning("ledger_read_failed", content_hash=content_hash, error=str(e))
        tx_hash = None
        deployment = self.resolver.deployment_for(entry.chain_id)
        if deployment is not None and deployment.rpc_url is not None:
            client = self.registry_factory.get(deployment.rpc_url)
            tx_hash = client.find_registration_tx(entry.registry_address, content_hash)

        return HashLookup(
            entry=entry, manifest=manifest, last_verification=last, tx_hash=tx_hash
        )
