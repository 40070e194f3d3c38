"""Verdict engine.

Combines a file digest, its signed manifest and the on-chain registry entry
into an ``OK`` / ``WARN`` / ``FAIL`` verdict. Hash and signer agreement are
required for any trust claim; a manifest URI mismatch only downgrades to
``WARN``.
"""

from datetime import datetime, timezone

from eth_account import Account
from eth_account.messages import encode_defunct

from provenance.core.errors import InvalidSignatureError
from provenance.verification.hasher import hashes_match
from provenance.verification.manifest import Manifest
from provenance.verification.models import (
    ProofContent,
    ProofDocument,
    ProofManifest,
    ProofNetwork,
    ProofOnchain,
    ProofSignature,
    ProofTx,
    ProofVerification,
    RegistryEntry,
    Verdict,
    VerdictChecks,
    VerdictStatus,
)

REASON_NO_ENTRY = "no_onchain_entry"
REASON_HASH_MISMATCH = "content_hash_mismatch"
REASON_CREATOR_MISMATCH = "creator_mismatch"
REASON_URI_MISMATCH = "manifest_uri_mismatch"


def recover_signer(content_hash: str, signature: str) -> str:
    """Recover the address that signed the raw bytes of ``content_hash``.

    The message is the 32-byte digest itself under the EIP-191 personal-sign
    prefix, not its hex text.

    Raises:
        InvalidSignatureError: If the signature is malformed
    """
    try:
        message = encode_defunct(hexstr=content_hash)
        return Account.recover_message(message, signature=signature)
    except Exception as exc:  # noqa: BLE001
        raise InvalidSignatureError(
            f"Cannot recover signer from manifest signature: {exc}"
        ) from exc


def status_for(
    manifest_hash_ok: bool, creator_ok: bool, manifest_ok: bool
) -> VerdictStatus:
    if not (manifest_hash_ok and creator_ok):
        return VerdictStatus.FAIL
    if not manifest_ok:
        return VerdictStatus.WARN
    return VerdictStatus.OK


def compute_verdict(
    file_hash: str,
    manifest: Manifest,
    entry: RegistryEntry,
    presented_uri: str,
    recovered_signer: str | None = None,
) -> Verdict:
    """Compare file, manifest and on-chain state.

    Pure: identical inputs always give an identical verdict. An empty
    registry entry is not an error; it yields ``FAIL`` with the
    ``no_onchain_entry`` reason.

    Args:
        file_hash: Digest of the presented content
        manifest: Fetched manifest
        entry: Registry entry for the content (possibly empty)
        presented_uri: Manifest URI used for this verification
        recovered_signer: Signer already recovered from the manifest

    Returns:
        Verdict with per-check results and failure reasons
    """
    if recovered_signer is None:
        recovered_signer = recover_signer(manifest.content_hash, manifest.signature)

    manifest_hash_ok = hashes_match(manifest.content_hash, file_hash)
    creator_ok = (
        not entry.is_empty and entry.creator.lower() == recovered_signer.lower()
    )
    manifest_ok = entry.manifest_uri == presented_uri

    reasons = []
    if not manifest_hash_ok:
        reasons.append(REASON_HASH_MISMATCH)
    if entry.is_empty:
        reasons.append(REASON_NO_ENTRY)
    elif not creator_ok:
        reasons.append(REASON_CREATOR_MISMATCH)
    if not manifest_ok:
        reasons.append(REASON_URI_MISMATCH)

    return Verdict(
        status=status_for(manifest_hash_ok, creator_ok, manifest_ok),
        file_hash=file_hash,
        recovered_signer=recovered_signer,
        onchain=entry,
        checks=VerdictChecks(
            manifest_hash_ok=manifest_hash_ok,
            creator_ok=creator_ok,
            manifest_ok=manifest_ok,
        ),
        reasons=reasons,
    )


def build_proof(
    verdict: Verdict,
    manifest: Manifest,
    manifest_uri: str,
    chain_id: int | None = None,
    registry_address: str | None = None,
    tx_hash: str | None = None,
    filename: str | None = None,
    generated_at: datetime | None = None,
) -> ProofDocument:
    """Package a verdict into an archivable proof document."""
    entry = verdict.onchain
    return ProofDocument(
        generated_at=generated_at or datetime.now(timezone.utc),
        network=ProofNetwork(chain_id=chain_id),
        registry=registry_address,
        content=ProofContent(hash=verdict.file_hash, file=filename),
        manifest=ProofManifest(
            uri=manifest_uri,
            creator_did=manifest.creator_did,
            signature=manifest.signature,
        ),
        onchain=ProofOnchain(
            creator=entry.creator,
            manifest_uri=entry.manifest_uri,
            timestamp=entry.timestamp,
        ),
        signature=ProofSignature(
            recovered=verdict.recovered_signer,
            valid=verdict.checks.creator_ok,
        ),
        tx=ProofTx(tx_hash=tx_hash) if tx_hash else None,
        verification=ProofVerification(
            file_hash_matches_manifest=verdict.checks.manifest_hash_ok,
            creator_matches_onchain=verdict.checks.creator_ok,
            manifest_uri_matches_onchain=verdict.checks.manifest_ok,
            status=verdict.status,
        ),
    )
