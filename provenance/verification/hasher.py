"""Content hashing.

The whole system uses one digest algorithm. Changing it breaks every
registered manifest, so it is not a per-call option.
"""

import hashlib
from pathlib import Path
from typing import BinaryIO

from provenance.core.errors import ReadError, ValidationError
from provenance.verification.models import CONTENT_HASH_PATTERN

ALGORITHM = "sha256"

# Read files in 1 MiB chunks
CHUNK_SIZE = 1024 * 1024


def _prefixed(digest: "hashlib._Hash") -> str:
    return "0x" + digest.hexdigest()


def sha256_hex(data: bytes) -> str:
    """Hash an in-memory buffer.

    Args:
        data: Bytes to hash

    Returns:
        0x-prefixed lowercase hex digest
    """
    return _prefixed(hashlib.sha256(data))


def sha256_hex_from_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    """Hash a binary stream without buffering it whole."""
    digest = hashlib.sha256()
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        digest.update(chunk)
    return _prefixed(digest)


def sha256_hex_from_file(path: str | Path, chunk_size: int = CHUNK_SIZE) -> str:
    """Hash a file on disk.

    Args:
        path: File to hash
        chunk_size: Read size in bytes

    Returns:
        0x-prefixed lowercase hex digest

    Raises:
        ReadError: If the file cannot be read
    """
    try:
        with open(path, "rb") as f:
            return sha256_hex_from_stream(f, chunk_size)
    except OSError as e:
        raise ReadError(f"Cannot read {path}: {e.strerror or e}") from e


def normalize_content_hash(value: str) -> str:
    """Validate a 0x-prefixed 32-byte hex hash and lowercase it.

    Raises:
        ValidationError: If the value is not a content hash
    """
    if not isinstance(value, str) or not CONTENT_HASH_PATTERN.match(value):
        raise ValidationError(
            "Hash must be a 32-byte hex string with 0x prefix"
        )
    return value.lower()


def hashes_match(left: str | None, right: str | None) -> bool:
    """Compare two hex digests; hex case carries no meaning."""
    if not left or not right:
        return False
    return left.lower() == right.lower()
