"""Compiled contract artifact loading.

Reads Foundry (``out/X.sol/X.json``) and Hardhat (``artifacts/**/X.json``)
artifact files. The two formats differ in how bytecode is stored:
Foundry nests it as ``{"bytecode": {"object": "0x..."}}``, Hardhat stores
the hex string directly.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from web3 import Web3
from web3.contract import Contract

logger = logging.getLogger(__name__)


class ArtifactNotFound(Exception):
    """Compiled contract JSON file missing."""


#: Interface every message receiving contract implements.
#:
#: The relayer calls this on the destination contract after the gateway
#: has approved the message.
EXECUTABLE_ABI = [
    {
        "type": "function",
        "name": "execute",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "commandId", "type": "bytes32"},
            {"name": "sourceChain", "type": "string"},
            {"name": "sourceAddress", "type": "string"},
            {"name": "payload", "type": "bytes"},
        ],
        "outputs": [],
    }
]


@dataclass(slots=True, frozen=True)
class ContractArtifact:
    """ABI and creation bytecode of a compiled contract."""

    #: Contract name, e.g. ``LocalGateway``
    name: str

    abi: list[dict]

    #: 0x-prefixed creation bytecode
    bytecode: str

    def get_contract(self, web3: Web3, address: str | None = None) -> type[Contract] | Contract:
        """Create a web3 contract factory, or a bound instance if ``address`` is given."""
        if address is None:
            return web3.eth.contract(abi=self.abi, bytecode=self.bytecode)
        return web3.eth.contract(address=Web3.to_checksum_address(address), abi=self.abi)


def _normalise_bytecode(raw) -> str:
    if isinstance(raw, dict):
        raw = raw.get("object", "")
    assert isinstance(raw, str), f"Unknown bytecode format: {type(raw)}"
    if not raw.startswith("0x"):
        raw = "0x" + raw
    return raw


def load_artifact(path: Path | str) -> ContractArtifact:
    """Load a compiled contract from a JSON artifact file.

    :raise ArtifactNotFound:
        If the file does not exist
    """
    path = Path(path)
    if not path.exists():
        raise ArtifactNotFound(f"Contract artifact {path} does not exist")

    data = json.loads(path.read_text())
    assert "abi" in data, f"{path} does not look like a compiled contract, no abi"
    name = data.get("contractName") or path.stem
    bytecode = _normalise_bytecode(data.get("bytecode", ""))
    return ContractArtifact(name=name, abi=data["abi"], bytecode=bytecode)


def find_artifact(artifacts_dir: Path | str, contract_name: str) -> ContractArtifact:
    """Look up ``contract_name`` in a Foundry or Hardhat output folder.

    Tries ``{dir}/{name}.sol/{name}.json``, ``{dir}/{name}.json`` and
    finally any ``{name}.json`` below the folder.

    :raise ArtifactNotFound:
        If no matching file exists
    """
    artifacts_dir = Path(artifacts_dir)

    candidates = [
        artifacts_dir / f"{contract_name}.sol" / f"{contract_name}.json",
        artifacts_dir / f"{contract_name}.json",
    ]
    for candidate in candidates:
        if candidate.exists():
            return load_artifact(candidate)

    for candidate in sorted(artifacts_dir.rglob(f"{contract_name}.json")):
        # Hardhat also writes X.dbg.json next to X.json, rglob pattern skips those
        return load_artifact(candidate)

    raise ArtifactNotFound(f"Could not find compiled {contract_name} in {artifacts_dir}")


def resolve_artifacts_dir(artifacts_dir: Path | str | None = None) -> Path:
    """Pick the folder compiled contracts are read from.

    Order: explicit argument, ``LOCALNET_ARTIFACTS_DIR`` environment variable,
    the bundled Foundry project (compiled on demand).
    """
    if artifacts_dir:
        return Path(artifacts_dir)

    env_dir = os.environ.get("LOCALNET_ARTIFACTS_DIR")
    if env_dir:
        return Path(env_dir)

    from eth_localnet.forge import compile_bundled_contracts

    return compile_bundled_contracts()
