"""Read-only client for the on-chain content registry."""

import logging
import threading
from typing import Any, Callable, TypeVar

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from provenance.core.errors import RpcError, ValidationError
from provenance.verification.models import (
    ADDRESS_PATTERN,
    ZERO_ADDRESS,
    RegistryEntry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ContentRegistered(bytes32 indexed contentHash, address indexed creator, string manifestURI, uint64 timestamp)
CONTENT_REGISTERED_SIGNATURE = "ContentRegistered(bytes32,address,string,uint64)"

_ENTRY_OUTPUTS = [
    {"name": "creator", "type": "address"},
    {"name": "contentHash", "type": "bytes32"},
    {"name": "manifestURI", "type": "string"},
    {"name": "timestamp", "type": "uint64"},
]

REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "entries",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "bytes32"}],
        "outputs": _ENTRY_OUTPUTS,
    },
    {
        "type": "function",
        "name": "resolveByPlatform",
        "stateMutability": "view",
        "inputs": [
            {"name": "platform", "type": "string"},
            {"name": "platformId", "type": "string"},
        ],
        "outputs": _ENTRY_OUTPUTS,
    },
]

# Transport and decoding failures from web3 and its HTTP provider
_RPC_EXCEPTIONS = (Web3Exception, requests.RequestException, ValueError, OSError)


def create_web3(rpc_url: str, timeout: float = 10) -> Web3:
    """Build a Web3 client bound to one RPC endpoint.

    Every call made through it is bounded by ``timeout`` seconds.
    """
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))


def _hash_bytes(content_hash: str) -> bytes:
    if not isinstance(content_hash, str) or len(content_hash) != 66:
        raise ValidationError(f"Invalid content hash: {content_hash!r}")
    try:
        return bytes.fromhex(content_hash[2:])
    except ValueError as e:
        raise ValidationError(f"Invalid content hash: {content_hash!r}") from e


def _checksum(address: str) -> str:
    if not ADDRESS_PATTERN.match(address or ""):
        raise ValidationError(f"Invalid registry address: {address!r}")
    return Web3.to_checksum_address(address)


def _to_entry(raw: Any, fallback_hash: str) -> RegistryEntry:
    try:
        creator, content_hash, manifest_uri, timestamp = raw
    except (TypeError, ValueError) as e:
        raise RpcError(f"Malformed registry response: {raw!r}") from e
    return RegistryEntry(
        creator=creator or ZERO_ADDRESS,
        content_hash=Web3.to_hex(content_hash) if content_hash else fallback_hash,
        manifest_uri=manifest_uri or "",
        timestamp=int(timestamp or 0),
    )


class RegistryClient:
    """Reads entries, platform bindings and registration logs from one chain."""

    def __init__(
        self,
        web3: Web3,
        rpc_url: str | None = None,
        start_block: int | None = None,
        block_window: int = 1_000_000,
    ) -> None:
        """Initialize client.

        Args:
            web3: Web3 client for the chain
            rpc_url: Endpoint the client is bound to, for logging
            start_block: First block scanned for registration logs
            block_window: Blocks scanned back from the head when no start block
        """
        self.web3 = web3
        self.rpc_url = rpc_url
        self.start_block = start_block
        self.block_window = block_window
        self._chain_id: int | None = None

    @classmethod
    def from_rpc_url(cls, rpc_url: str, timeout: float = 10, **kwargs: Any) -> "RegistryClient":
        return cls(create_web3(rpc_url, timeout), rpc_url=rpc_url, **kwargs)

    def _call(self, description: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except (RpcError, ValidationError):
            raise
        except _RPC_EXCEPTIONS as e:
            raise RpcError(
                f"RPC call {description} failed on {self.rpc_url or 'chain'}: {e}",
                chain_id=self._chain_id,
            ) from e

    def _contract(self, registry_address: str) -> Any:
        return self.web3.eth.contract(
            address=_checksum(registry_address), abi=REGISTRY_ABI
        )

    @property
    def chain_id(self) -> int:
        """Chain ID reported by the endpoint (fetched once)."""
        if self._chain_id is None:
            self._chain_id = int(self._call("eth_chainId", lambda: self.web3.eth.chain_id))
        return self._chain_id

    def get_entry(self, registry_address: str, content_hash: str) -> RegistryEntry:
        """Read the registry entry for a content hash.

        A missing entry comes back with the zero-address creator.

        Raises:
            RpcError: If the chain cannot be queried
        """
        contract = self._contract(registry_address)
        key = _hash_bytes(content_hash)
        raw = self._call(
            "entries", lambda: contract.functions.entries(key).call()
        )
        return _to_entry(raw, content_hash)

    def get_binding(
        self, registry_address: str, platform: str, platform_id: str
    ) -> RegistryEntry:
        """Resolve a platform post binding to its registry entry.

        Raises:
            RpcError: If the chain cannot be queried
        """
        contract = self._contract(registry_address)
        raw = self._call(
            "resolveByPlatform",
            lambda: contract.functions.resolveByPlatform(platform, platform_id).call(),
        )
        return _to_entry(raw, "0x" + "0" * 64)

    def get_start_block(self) -> int:
        """First block to scan for registration events."""
        if self.start_block is not None:
            return self.start_block
        head = self._call("eth_blockNumber", lambda: self.web3.eth.block_number)
        return max(0, int(head) - self.block_window)

    def find_registration_tx(self, registry_address: str, content_hash: str) -> str | None:
        """Find the most recent registration transaction for a content hash.

        Best effort: providers often restrict log ranges, so any failure is
        logged and reported as unknown (None) instead of raised.
        """
        topic0 = Web3.to_hex(Web3.keccak(text=CONTENT_REGISTERED_SIGNATURE))
        try:
            logs = self._call(
                "eth_getLogs",
                lambda: self.web3.eth.get_logs(
                    {
                        "address": _checksum(registry_address),
                        "fromBlock": self.get_start_block(),
                        "toBlock": "latest",
                        "topics": [topic0, content_hash.lower()],
                    }
                ),
            )
        except (RpcError, ValidationError) as e:
            logger.info("Registration log lookup failed for %s: %s", content_hash, e)
            return None
        if not logs:
            return None
        return Web3.to_hex(logs[-1]["transactionHash"])


class RegistryClientFactory:
    """Hands out one shared, read-only client per RPC endpoint."""

    def __init__(
        self,
        default_rpc_url: str,
        timeout: float = 10,
        start_block: int | None = None,
        block_window: int = 1_000_000,
        client_class: type[RegistryClient] = RegistryClient,
    ) -> None:
        self.default_rpc_url = default_rpc_url
        self.timeout = timeout
        self.start_block = start_block
        self.block_window = block_window
        self.client_class = client_class
        self._clients: dict[str, RegistryClient] = {}
        self._lock = threading.Lock()

    def get(self, rpc_url: str | None = None) -> RegistryClient:
        """Client for ``rpc_url``, or for the default endpoint when omitted."""
        url = rpc_url or self.default_rpc_url
        with self._lock:
            client = self._clients.get(url)
            if client is None:
                client = self.client_class.from_rpc_url(
                    url,
                    timeout=self.timeout,
                    start_block=self.start_block,
                    block_window=self.block_window,
                )
                self._clients[url] = client
            return client
