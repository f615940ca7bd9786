"""Small helpers for local cross-chain development.

- Sign gateway ``execute()`` input with an operator key
- Random and log derived command ids
- Deterministic test accounts derived from a seed string
- JSON output and a one-off JSON HTTP GET
- Contract deployment from a compiled artifact
"""

import json
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import requests
from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_typing import HexStr
from web3 import Web3
from web3.contract import Contract

from eth_localnet.abi import ContractArtifact
from eth_localnet.tx import send_transaction

logger = logging.getLogger(__name__)

#: Balance every default account starts with, in wei
DEFAULT_ACCOUNT_BALANCE = 10_000_000_000_000_000_000_000_000_000_000_000

#: Exclusive upper bound for the integer hashed by :py:func:`get_random_id`
RANDOM_ID_MAX = 10_000_000_000


class HttpGetError(Exception):
    """HTTP GET did not return a JSON document."""


@dataclass(slots=True, frozen=True)
class DefaultAccount:
    """A deterministic test account."""

    #: Starting balance in wei
    balance: int

    #: 0x-prefixed 32 byte private key
    secret_key: HexStr

    @property
    def account(self) -> LocalAccount:
        return Account.from_key(self.secret_key)


def _sign_data_hash(data: bytes, account: LocalAccount) -> bytes:
    # Same as personal_sign over the 32 byte hash
    message = encode_defunct(primitive=Web3.keccak(data))
    return bytes(account.sign_message(message).signature)


def get_signed_execute_input(data: bytes, account: LocalAccount) -> bytes:
    """Create ``execute()`` input for a gateway with a single operator.

    The operator signs ``keccak256(data)`` as an Ethereum signed message.

    :return:
        ``abi.encode(bytes data, bytes signature)``
    """
    data = bytes(data)
    signature = _sign_data_hash(data, account)
    return encode(["bytes", "bytes"], [data, signature])


def get_signed_multisig_execute_input(data: bytes, accounts: Iterable[LocalAccount]) -> bytes:
    """Create ``execute()`` input signed by several operators.

    Signatures are ordered by the lowercased signer address,
    as multisig verifiers walk the signers in ascending order.

    :return:
        ``abi.encode(bytes data, bytes[] signatures)``
    """
    data = bytes(data)
    signers = sorted(accounts, key=lambda a: a.address.lower())
    signatures = [_sign_data_hash(data, a) for a in signers]
    return encode(["bytes", "bytes[]"], [data, signatures])


def get_random_id() -> HexStr:
    """Random 32 byte id, e.g. for gateway command ids."""
    value = random.randrange(RANDOM_ID_MAX)
    return HexStr(Web3.keccak(text=str(value)).to_0x_hex())


def get_log_id(chain: str, log: dict) -> HexStr:
    """Deterministic 32 byte id of an event log.

    The same log always maps to the same id, so relaying it twice
    is detected by the gateway.
    """
    key = f"{chain}:{log['blockNumber']}:{log['transactionIndex']}:{log['logIndex']}"
    return HexStr(Web3.keccak(text=key).to_0x_hex())


def default_accounts(n: int, seed: str = "") -> list[DefaultAccount]:
    """Derive ``n`` test accounts from ``seed``.

    The first key is ``keccak256(abi.encode(string seed))`` and every
    following key is the keccak of the previous key.
    Same seed gives the same accounts on every run.
    """
    assert n >= 0, f"Got {n}"
    keys = []
    key = Web3.keccak(encode(["string"], [seed]))
    for _ in range(n):
        keys.append(key)
        key = Web3.keccak(key)
    return [DefaultAccount(balance=DEFAULT_ACCOUNT_BALANCE, secret_key=HexStr(k.to_0x_hex())) for k in keys]


def set_json(data: Any, path: Path | str):
    """Write JSON with two space indent, creating parent folders."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")


def http_get(url: str, timeout: float = 30.0) -> Any:
    """GET a JSON document.

    :raise HttpGetError:
        Status other than 200 or a content type other than ``application/json``

    :raise ValueError:
        Body is not valid JSON
    """
    resp = requests.get(url, timeout=timeout)

    if resp.status_code != 200:
        raise HttpGetError(f"Request Failed.\nStatus Code: {resp.status_code}")

    content_type = resp.headers.get("content-type", "")
    if not content_type.startswith("application/json"):
        raise HttpGetError(f"Invalid content-type.\nExpected application/json but received {content_type}")

    return json.loads(resp.text)


def deploy_contract(
    web3: Web3,
    deployer: LocalAccount,
    artifact: ContractArtifact,
    args: Iterable = (),
    tx_params: dict | None = None,
) -> Contract:
    """Deploy a compiled contract and wait until it is mined.

    Example:

    .. code-block:: python

        gateway = deploy_contract(web3, owner, find_artifact(out, "LocalGateway"), [operator.address])

    :param tx_params:
        Extra transaction fields, e.g. ``value`` or ``gas``
    """
    factory = artifact.get_contract(web3)
    tx = factory.constructor(*args).build_transaction({"from": deployer.address, **(tx_params or {})})
    receipt = send_transaction(web3, deployer, tx)
    address = receipt["contractAddress"]
    assert address, f"No contract address in deployment receipt of {artifact.name}: {receipt}"
    logger.info("Deployed %s at %s on chain %d", artifact.name, address, web3.eth.chain_id)
    return artifact.get_contract(web3, address)
