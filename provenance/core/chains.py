"""Supported chains and registry deployments."""

import logging
from dataclasses import dataclass

from pydantic import BaseModel

from provenance.core.config import Settings

logger = logging.getLogger(__name__)


class ChainConfig(BaseModel):
    """Static description of an EVM chain."""

    chain_id: int
    name: str
    display_name: str
    rpc_url: str
    block_explorer: str = ""
    testnet: bool = False


SUPPORTED_CHAINS: dict[str, ChainConfig] = {
    chain.name: chain
    for chain in (
        ChainConfig(
            chain_id=1,
            name="ethereum",
            display_name="Ethereum Mainnet",
            rpc_url="https://eth.llamarpc.com",
            block_explorer="https://etherscan.io",
        ),
        ChainConfig(
            chain_id=11155111,
            name="sepolia",
            display_name="Ethereum Sepolia",
            rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
            block_explorer="https://sepolia.etherscan.io",
            testnet=True,
        ),
        ChainConfig(
            chain_id=137,
            name="polygon",
            display_name="Polygon",
            rpc_url="https://polygon-rpc.com",
            block_explorer="https://polygonscan.com",
        ),
        ChainConfig(
            chain_id=80002,
            name="polygonAmoy",
            display_name="Polygon Amoy",
            rpc_url="https://rpc-amoy.polygon.technology",
            block_explorer="https://amoy.polygonscan.com",
            testnet=True,
        ),
        ChainConfig(
            chain_id=8453,
            name="base",
            display_name="Base",
            rpc_url="https://mainnet.base.org",
            block_explorer="https://basescan.org",
        ),
        ChainConfig(
            chain_id=84532,
            name="baseSepolia",
            display_name="Base Sepolia",
            rpc_url="https://sepolia.base.org",
            block_explorer="https://sepolia.basescan.org",
            testnet=True,
        ),
        ChainConfig(
            chain_id=42161,
            name="arbitrum",
            display_name="Arbitrum One",
            rpc_url="https://arb1.arbitrum.io/rpc",
            block_explorer="https://arbiscan.io",
        ),
        ChainConfig(
            chain_id=421614,
            name="arbitrumSepolia",
            display_name="Arbitrum Sepolia",
            rpc_url="https://sepolia-rollup.arbitrum.io/rpc",
            block_explorer="https://sepolia.arbiscan.io",
            testnet=True,
        ),
        ChainConfig(
            chain_id=10,
            name="optimism",
            display_name="Optimism",
            rpc_url="https://mainnet.optimism.io",
            block_explorer="https://optimistic.etherscan.io",
        ),
        ChainConfig(
            chain_id=11155420,
            name="optimismSepolia",
            display_name="Optimism Sepolia",
            rpc_url="https://sepolia.optimism.io",
            block_explorer="https://sepolia-optimism.etherscan.io",
            testnet=True,
        ),
        ChainConfig(
            chain_id=31337,
            name="localhost",
            display_name="Localhost",
            rpc_url="http://127.0.0.1:8545",
            testnet=True,
        ),
    )
}


@dataclass(frozen=True)
class ChainDeployment:
    """A registry contract deployed on one chain.

    ``rpc_url`` is None when neither the settings nor the built-in table
    know how to reach the chain.
    """

    chain_id: int
    registry_address: str
    rpc_url: str | None


def get_chain_by_id(chain_id: int) -> ChainConfig | None:
    """Get chain configuration by chain ID."""
    for chain in SUPPORTED_CHAINS.values():
        if chain.chain_id == chain_id:
            return chain
    return None


def get_explorer_tx_url(chain_id: int | None, tx_hash: str | None) -> str | None:
    """Get block explorer URL for a transaction."""
    if not chain_id or not tx_hash:
        return None
    chain = get_chain_by_id(chain_id)
    if not chain or not chain.block_explorer:
        return None
    return f"{chain.block_explorer}/tx/{tx_hash}"


def get_explorer_address_url(chain_id: int | None, address: str | None) -> str | None:
    """Get block explorer URL for an address."""
    if not chain_id or not address:
        return None
    chain = get_chain_by_id(chain_id)
    if not chain or not chain.block_explorer:
        return None
    return f"{chain.block_explorer}/address/{address}"


def load_deployments(settings: Settings) -> list[ChainDeployment]:
    """Build the ordered registry deployment table.

    Order follows ``REGISTRY_DEPLOYMENTS`` as configured; it is the order the
    cross-chain resolver queries chains in. With no configured deployments the
    default ``REGISTRY_ADDRESS`` on ``DEFAULT_CHAIN_ID`` is used.

    Args:
        settings: Application settings

    Returns:
        Ordered list of deployments
    """
    deployments: list[ChainDeployment] = []
    for chain_id, registry_address in settings.REGISTRY_DEPLOYMENTS.items():
        rpc_url = settings.CHAIN_RPC_URLS.get(chain_id)
        if rpc_url is None:
            chain = get_chain_by_id(chain_id)
            rpc_url = chain.rpc_url if chain else None
        if rpc_url is None:
            logger.warning(
                "No RPC endpoint for chain %s; it will be skipped during resolution",
                chain_id,
            )
        deployments.append(
            ChainDeployment(
                chain_id=chain_id,
                registry_address=registry_address,
                rpc_url=rpc_url,
            )
        )
    if not deployments and settings.REGISTRY_ADDRESS:
        deployments.append(
            ChainDeployment(
                chain_id=settings.DEFAULT_CHAIN_ID,
                registry_address=settings.REGISTRY_ADDRESS,
                rpc_url=settings.RPC_URL,
            )
        )
    logger.debug("Loaded %d registry deployments", len(deployments))
    return deployments
