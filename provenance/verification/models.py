"""Verification data models.

Wire shapes use the camelCase keys of the archived proof format; Python code
works with the snake_case attribute names. Dump with ``to_wire()``.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from provenance.core.errors import ValidationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_HASH = "0x" + "0" * 64

CONTENT_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")
ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
IPFS_URI_PATTERN = re.compile(r"^ipfs://[a-zA-Z0-9]+(/[^\s]*)?$")
HTTP_URI_PATTERN = re.compile(r"^https?://[^\s/$.?#][^\s]*$")


class VerificationType(str, Enum):
    """Kind of verification work."""

    VERIFY = "verify"
    PROOF = "proof"


class VerdictStatus(str, Enum):
    """Tri-state verification outcome."""

    OK = "OK"
    WARN = "WARN"
    FAIL = "FAIL"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with wire-format keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RegistryEntry(_WireModel):
    """On-chain registry record keyed by content hash."""

    creator: str = ZERO_ADDRESS
    content_hash: str = Field(default=ZERO_HASH, alias="contentHash")
    manifest_uri: str = Field(default="", alias="manifestURI")
    timestamp: int = 0

    @property
    def is_empty(self) -> bool:
        """A zero-address creator means there is no entry."""
        return self.creator.lower() == ZERO_ADDRESS

    @classmethod
    def empty(cls, content_hash: str = ZERO_HASH) -> "RegistryEntry":
        return cls(content_hash=content_hash)


class CrossChainRegistryEntry(RegistryEntry):
    """A registry entry together with where it was found."""

    chain_id: int = Field(alias="chainId")
    registry_address: str = Field(alias="registryAddress")


class VerdictChecks(_WireModel):
    manifest_hash_ok: bool = Field(alias="manifestHashOk")
    creator_ok: bool = Field(alias="creatorOk")
    manifest_ok: bool = Field(alias="manifestOk")


class Verdict(_WireModel):
    """Outcome of comparing file, manifest and on-chain state."""

    status: VerdictStatus
    file_hash: str = Field(alias="fileHash")
    recovered_signer: str = Field(alias="recoveredSigner")
    onchain: RegistryEntry
    checks: VerdictChecks
    # Machine-readable failure reasons, e.g. "no_onchain_entry"
    reasons: list[str] = Field(default_factory=list)

    @property
    def onchain_entry_found(self) -> bool:
        return not self.onchain.is_empty


class ProofNetwork(_WireModel):
    chain_id: int | None = Field(default=None, alias="chainId")


class ProofContent(_WireModel):
    hash: str
    file: str | None = None


class ProofManifest(_WireModel):
    uri: str
    creator_did: str | None = None
    signature: str


class ProofOnchain(_WireModel):
    creator: str
    manifest_uri: str = Field(alias="manifestURI")
    timestamp: int


class ProofSignature(_WireModel):
    recovered: str
    valid: bool


class ProofTx(_WireModel):
    tx_hash: str = Field(alias="txHash")


class ProofVerification(_WireModel):
    file_hash_matches_manifest: bool = Field(alias="fileHashMatchesManifest")
    creator_matches_onchain: bool = Field(alias="creatorMatchesOnchain")
    manifest_uri_matches_onchain: bool = Field(alias="manifestURIMatchesOnchain")
    status: VerdictStatus


class ProofDocument(_WireModel):
    """Portable proof of a verification, meant to be archived.

    The serialized shape is a stable contract: archived documents are
    re-verified later without calling back into this system.
    """

    version: str = "1.0"
    generated_at: datetime
    network: ProofNetwork
    registry: str | None = None
    content: ProofContent
    manifest: ProofManifest
    onchain: ProofOnchain
    signature: ProofSignature
    tx: ProofTx | None = None
    verification: ProofVerification

    @property
    def status(self) -> VerdictStatus:
        return self.verification.status


VerificationOutcome = Verdict | ProofDocument


# Request variants


class ByFile(BaseModel):
    """Verify a local file; it is hashed by the worker."""

    kind: Literal["file"] = "file"
    path: str
    filename: str | None = None
    # Uploaded temp file, removed once the verification is final
    delete_after: bool = False


class ByHash(BaseModel):
    """Verify a precomputed content hash."""

    kind: Literal["hash"] = "hash"
    content_hash: str

    @field_validator("content_hash")
    @classmethod
    def validate_content_hash(cls, value: str) -> str:
        if not CONTENT_HASH_PATTERN.match(value):
            raise ValueError("content hash must be 0x followed by 64 hex characters")
        return value.lower()


class SingleChain(BaseModel):
    """Look the entry up on one known registry."""

    kind: Literal["single"] = "single"
    registry_address: str
    rpc_url: str | None = None

    @field_validator("registry_address")
    @classmethod
    def validate_registry_address(cls, value: str) -> str:
        if not ADDRESS_PATTERN.match(value):
            raise ValueError("registry address must be a 20-byte hex address")
        return value

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, value: str | None) -> str | None:
        if value is not None and not HTTP_URI_PATTERN.match(value):
            raise ValueError("rpc url must be an http(s) URL")
        return value


class CrossChain(BaseModel):
    """Search every configured registry deployment in priority order."""

    kind: Literal["cross"] = "cross"


ContentSource = Annotated[ByFile | ByHash, Field(discriminator="kind")]
RegistryTarget = Annotated[SingleChain | CrossChain, Field(discriminator="kind")]


class VerificationRequest(BaseModel):
    """A validated request to verify content against its manifest."""

    type: VerificationType = VerificationType.VERIFY
    source: ContentSource
    manifest_uri: str
    target: RegistryTarget = Field(default_factory=CrossChain)

    @field_validator("manifest_uri")
    @classmethod
    def validate_manifest_uri(cls, value: str) -> str:
        if not value:
            raise ValueError("manifest URI is required")
        if not (IPFS_URI_PATTERN.match(value) or HTTP_URI_PATTERN.match(value)):
            raise ValueError("manifest URI must be ipfs:// or http(s)://")
        return value

    @property
    def registry_address(self) -> str | None:
        if isinstance(self.target, SingleChain):
            return self.target.registry_address
        return None

    @property
    def rpc_url(self) -> str | None:
        if isinstance(self.target, SingleChain):
            return self.target.rpc_url
        return None

    @property
    def content_hash(self) -> str | None:
        if isinstance(self.source, ByHash):
            return self.source.content_hash
        return None

    @classmethod
    def build(cls, **data: Any) -> "VerificationRequest":
        """Validate request data, raising the package ``ValidationError``."""
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            messages = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(messages) from e
