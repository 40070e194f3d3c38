"""Read-only lookups against the registry."""

from typing import Any

from fastapi import APIRouter, Depends, Query

from provenance.api.v1.dependencies import get_service
from provenance.core.chains import (
    get_chain_by_id,
    get_explorer_address_url,
    get_explorer_tx_url,
)
from provenance.core.errors import ValidationError
from provenance.verification.models import CrossChainRegistryEntry
from provenance.verification.platform import parse_platform_input
from provenance.verification.service import VerificationService

router = APIRouter(prefix="/verify", tags=["verify"])


def _entry_response(entry: CrossChainRegistryEntry) -> dict[str, Any]:
    chain = get_chain_by_id(entry.chain_id)
    return {
        **entry.to_wire(),
        "chainName": chain.display_name if chain else None,
        "explorerUrl": get_explorer_address_url(entry.chain_id, entry.creator),
    }


@router.get("/platform")
def verify_platform(
    url: str | None = Query(None, description="Platform post URL"),
    platform: str | None = Query(None),
    platform_id: str | None = Query(None),
    service: VerificationService = Depends(get_service),
) -> dict[str, Any]:
    """Resolve a platform post to its registered content on any chain."""
    ref = parse_platform_input(url, platform, platform_id)
    if ref is None or not ref.platform_id:
        raise ValidationError("Provide url or platform + platform_id")
    entry = service.resolve_binding(ref.platform, ref.platform_id)
    return {
        "platform": ref.platform,
        "platformId": ref.platform_id,
        **_entry_response(entry),
    }


@router.get("/hash/{content_hash}")
def verify_hash(
    content_hash: str, service: VerificationService = Depends(get_service)
) -> dict[str, Any]:
    """Look a content hash up in the registry on any chain."""
    found = service.lookup_hash(content_hash)
    response = _entry_response(found.entry)
    response["manifest"] = (
        found.manifest.model_dump(mode="json") if found.manifest is not None else None
    )
    if found.last_verification is not None:
        last = found.last_verification
        response["lastVerification"] = {
            "status": last["status"],
            "verificationCount": last["verification_count"],
            "updatedAt": last["updated_at"].isoformat() if last["updated_at"] else None,
        }
    response["txHash"] = found.tx_hash
    response["explorerTxUrl"] = get_explorer_tx_url(found.entry.chain_id, found.tx_hash)
    return response
