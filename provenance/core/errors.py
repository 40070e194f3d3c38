"""Error taxonomy for verification.

Transport failures (``FetchError``, ``RpcError``) mean the verification could
not be performed right now and are worth retrying. Everything else describes
the input itself and will fail the same way on every attempt.
"""

from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)


class ProvenanceError(Exception):
    """Base class for verification errors."""

    status_code: int = HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False


class ReadError(ProvenanceError):
    """Local file could not be read."""


class FetchError(ProvenanceError):
    """Manifest could not be retrieved (network, timeout, HTTP error)."""

    status_code = HTTP_502_BAD_GATEWAY
    retryable = True


class ParseError(ProvenanceError):
    """Manifest is not valid JSON or does not match the manifest schema."""

    status_code = HTTP_422_UNPROCESSABLE_ENTITY


class UnsupportedSchemeError(ParseError):
    """Manifest URI uses a scheme we cannot fetch."""


class InvalidSignatureError(ParseError):
    """Manifest signature is malformed and no signer can be recovered."""


class RpcError(ProvenanceError):
    """Chain client unreachable or returned a malformed response."""

    status_code = HTTP_502_BAD_GATEWAY
    retryable = True

    def __init__(self, message: str, chain_id: int | None = None) -> None:
        super().__init__(message)
        self.chain_id = chain_id


class NotFoundError(ProvenanceError):
    """No on-chain entry or binding exists for the lookup key."""

    status_code = HTTP_404_NOT_FOUND


class ValidationError(ProvenanceError):
    """Malformed verification request."""

    status_code = HTTP_400_BAD_REQUEST


def is_retryable(exc: BaseException) -> bool:
    """Return whether a failed job should spend another attempt.

    Unknown exceptions count as retryable so unexpected transient faults
    still get the backoff budget.
    """
    if isinstance(exc, ProvenanceError):
        return exc.retryable
    return True
