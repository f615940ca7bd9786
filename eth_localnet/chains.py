"""Chain metadata for forking.

Public RPC endpoints are rate limited and often prune old state.
Set ``JSON_RPC_<NAME>`` (mainnet) or ``JSON_RPC_<NAME>_TESTNET`` (testnet)
environment variable to use your own node, e.g. ``JSON_RPC_ETHEREUM``.
"""

import os
from dataclasses import dataclass, replace
from typing import Literal

#: Which chain table to use
NetworkEnv = Literal["mainnet", "testnet"]


@dataclass(slots=True, frozen=True)
class ChainInfo:
    """Static information about a public chain."""

    #: Human readable name, also used as the chain name in cross-chain messages
    name: str

    chain_id: int

    #: JSON-RPC endpoint used as the fork source
    rpc: str

    #: Native gas token name
    token_name: str

    #: Native gas token symbol
    token_symbol: str


MAINNET_CHAINS: list[ChainInfo] = [
    ChainInfo("Moonbeam", 1284, "https://rpc.api.moonbeam.network", "Glimmer", "GLMR"),
    ChainInfo("Avalanche", 43114, "https://api.avax.network/ext/bc/C/rpc", "Avalanche", "AVAX"),
    ChainInfo("Fantom", 250, "https://rpc.ftm.tools", "Fantom", "FTM"),
    ChainInfo("Ethereum", 1, "https://ethereum-rpc.publicnode.com", "Ether", "ETH"),
    ChainInfo("Polygon", 137, "https://polygon-rpc.com", "Matic", "MATIC"),
]

TESTNET_CHAINS: list[ChainInfo] = [
    ChainInfo("Moonbeam", 1287, "https://rpc.api.moonbase.moonbeam.network", "DEV", "DEV"),
    ChainInfo("Avalanche", 43113, "https://api.avax-test.network/ext/bc/C/rpc", "Avalanche", "AVAX"),
    ChainInfo("Fantom", 4002, "https://rpc.testnet.fantom.network", "Fantom", "FTM"),
    ChainInfo("Ethereum", 11155111, "https://ethereum-sepolia-rpc.publicnode.com", "Ether", "ETH"),
    ChainInfo("Polygon", 80002, "https://rpc-amoy.polygon.technology", "Matic", "MATIC"),
]


def _rpc_env_var(name: str, env: NetworkEnv) -> str:
    var = f"JSON_RPC_{name.upper()}"
    if env == "testnet":
        var += "_TESTNET"
    return var


def get_chains(env: NetworkEnv) -> list[ChainInfo]:
    """Get the chain table of an environment, with RPC overrides from the environment variables applied.

    :raise ValueError:
        Unknown environment
    """
    if env == "mainnet":
        chains = MAINNET_CHAINS
    elif env == "testnet":
        chains = TESTNET_CHAINS
    else:
        raise ValueError(f"need to specify mainnet or testnet, got {env}")

    result = []
    for chain in chains:
        rpc = os.environ.get(_rpc_env_var(chain.name, env))
        result.append(replace(chain, rpc=rpc) if rpc else chain)
    return result


def get_chain_info(name: str, env: NetworkEnv = "testnet") -> ChainInfo | None:
    """Find chain by name, case insensitive."""
    for chain in get_chains(env):
        if chain.name.lower() == name.lower():
            return chain
    return None
