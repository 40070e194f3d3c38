"""Cross-chain registry resolution."""

import logging
from typing import Callable, Sequence

from provenance.core.chains import ChainDeployment
from provenance.core.errors import RpcError
from provenance.verification.models import CrossChainRegistryEntry, RegistryEntry
from provenance.verification.registry import RegistryClient, RegistryClientFactory

logger = logging.getLogger(__name__)

Lookup = Callable[[RegistryClient, str], RegistryEntry]


class CrossChainResolver:
    """Queries registry deployments in table order until one has a record.

    A deployment without an RPC endpoint is skipped. "Not found" (``None``)
    is only reported when every queried chain answered; if any chain failed
    and none matched, the failure is raised instead, as it is when no
    deployment can be queried at all.
    """

    def __init__(
        self,
        deployments: Sequence[ChainDeployment],
        client_factory: RegistryClientFactory,
    ) -> None:
        self.deployments = list(deployments)
        self.client_factory = client_factory

    def deployment_for(self, chain_id: int) -> ChainDeployment | None:
        for deployment in self.deployments:
            if deployment.chain_id == chain_id:
                return deployment
        return None

    def resolve_entry(self, content_hash: str) -> CrossChainRegistryEntry | None:
        """Find the registry entry for a content hash on any configured chain."""
        return self._resolve(
            f"hash {content_hash}",
            lambda client, address: client.get_entry(address, content_hash),
        )

    def resolve_binding(
        self, platform: str, platform_id: str
    ) -> CrossChainRegistryEntry | None:
        """Find a platform binding on any configured chain."""
        return self._resolve(
            f"binding {platform}:{platform_id}",
            lambda client, address: client.get_binding(address, platform, platform_id),
        )

    def _resolve(self, what: str, lookup: Lookup) -> CrossChainRegistryEntry | None:
        attempted = 0
        failures: list[RpcError] = []
        for deployment in self.deployments:
            if deployment.rpc_url is None:
                logger.debug("Skipping chain %s: no RPC endpoint", deployment.chain_id)
                continue
            attempted += 1
            try:
                client = self.client_factory.get(deployment.rpc_url)
                entry = lookup(client, deployment.registry_address)
            except RpcError as e:
                e.chain_id = deployment.chain_id
                logger.warning(
                    "Registry lookup for %s failed on chain %s: %s",
                    what,
                    deployment.chain_id,
                    e,
                )
                failures.append(e)
                continue

            if not entry.is_empty:
                logger.info("Resolved %s on chain %s", what, deployment.chain_id)
                return CrossChainRegistryEntry(
                    creator=entry.creator,
                    content_hash=entry.content_hash,
                    manifest_uri=entry.manifest_uri,
                    timestamp=entry.timestamp,
                    chain_id=deployment.chain_id,
                    registry_address=deployment.registry_address,
                )

        if attempted == 0:
            raise RpcError(
                f"Could not resolve {what}: no registry deployment has an RPC endpoint"
                if self.deployments
                else f"Could not resolve {what}: no registry deployments configured"
            )

        if failures:
            chains = ", ".join(str(f.chain_id) for f in failures)
            raise RpcError(
                f"Could not resolve {what}: {len(failures)} of {attempted} "
                f"chains unreachable ({chains})",
                chain_id=failures[0].chain_id,
            ) from failures[-1]

        return None
