"""Unit tests for eth_localnet.helpers.

Pure logic only, no nodes required.
"""

import json

import pytest
import requests
from eth_abi import decode, encode
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from eth_localnet import helpers
from eth_localnet.helpers import (
    DEFAULT_ACCOUNT_BALANCE,
    HttpGetError,
    default_accounts,
    get_log_id,
    get_random_id,
    get_signed_execute_input,
    get_signed_multisig_execute_input,
    http_get,
    set_json,
)


def _recover(data: bytes, signature: bytes) -> str:
    return Account.recover_message(encode_defunct(primitive=Web3.keccak(data)), signature=signature)


def test_signed_execute_input_recovers_signer():
    """The signature in the execute input is by the operator over keccak(data)."""
    operator = Account.create()
    data = encode(["uint256", "string"], [2500, "approveContractCall"])

    execute_input = get_signed_execute_input(data, operator)

    decoded_data, signature = decode(["bytes", "bytes"], execute_input)
    assert decoded_data == data
    assert len(signature) == 65
    assert _recover(data, signature) == operator.address


def test_signed_multisig_execute_input_sorted_by_address():
    """Signatures come in ascending signer address order, whatever the input order."""
    signers = [Account.create() for _ in range(4)]
    data = b"\x01\x02\x03"

    execute_input = get_signed_multisig_execute_input(data, reversed(signers))

    decoded_data, signatures = decode(["bytes", "bytes[]"], execute_input)
    assert decoded_data == data
    recovered = [_recover(data, s) for s in signatures]
    assert recovered == sorted((s.address for s in signers), key=str.lower)


def test_random_id_is_32_bytes():
    random_id = get_random_id()
    assert random_id.startswith("0x")
    assert len(random_id) == 66


def test_random_id_is_hash_of_integer(monkeypatch):
    monkeypatch.setattr(helpers.random, "randrange", lambda stop: 1234)
    assert get_random_id() == Web3.keccak(text="1234").to_0x_hex()


def test_log_id_deterministic():
    log = {"blockNumber": 12, "transactionIndex": 0, "logIndex": 3}
    assert get_log_id("Ethereum", log) == Web3.keccak(text="Ethereum:12:0:3").to_0x_hex()
    assert get_log_id("Ethereum", log) == get_log_id("Ethereum", dict(log))
    assert get_log_id("Avalanche", log) != get_log_id("Ethereum", log)


def test_default_accounts_key_chain():
    """First key is keccak of the ABI encoded seed, following keys hash the previous key."""
    accounts = default_accounts(3, "Ethereum")

    first = Web3.keccak(encode(["string"], ["Ethereum"]))
    assert accounts[0].secret_key == first.to_0x_hex()
    assert accounts[1].secret_key == Web3.keccak(first).to_0x_hex()
    assert accounts[2].secret_key == Web3.keccak(Web3.keccak(first)).to_0x_hex()
    assert all(a.balance == DEFAULT_ACCOUNT_BALANCE for a in accounts)


def test_default_accounts_same_seed_same_accounts():
    a = default_accounts(5, "Polygon")
    b = default_accounts(5, "Polygon")
    c = default_accounts(5, "Fantom")
    assert [x.account.address for x in a] == [x.account.address for x in b]
    assert a[0].account.address != c[0].account.address
    assert default_accounts(0) == []


def test_set_json_creates_folders(tmp_path):
    path = tmp_path / "nested" / "deeper" / "local.json"
    data = [{"name": "Ethereum", "chainId": 2500, "tokenName": None}]

    set_json(data, path)

    text = path.read_text()
    assert text.endswith("}\n]\n")
    assert '\n  {\n    "name": "Ethereum",' in text
    assert json.loads(text) == data


class _FakeResponse:
    def __init__(self, status_code: int, content_type: str, text: str):
        self.status_code = status_code
        self.headers = {"content-type": content_type}
        self.text = text


def test_http_get_json(monkeypatch):
    monkeypatch.setattr(requests, "get", lambda url, timeout: _FakeResponse(200, "application/json; charset=utf-8", '{"ok": true}'))
    assert http_get("http://localhost/") == {"ok": True}


def test_http_get_bad_status(monkeypatch):
    monkeypatch.setattr(requests, "get", lambda url, timeout: _FakeResponse(500, "application/json", "{}"))
    with pytest.raises(HttpGetError, match="Status Code: 500"):
        http_get("http://localhost/")


def test_http_get_bad_content_type(monkeypatch):
    monkeypatch.setattr(requests, "get", lambda url, timeout: _FakeResponse(200, "text/html", "<html>"))
    with pytest.raises(HttpGetError, match="Expected application/json but received text/html"):
        http_get("http://localhost/")


def test_http_get_invalid_json(monkeypatch):
    monkeypatch.setattr(requests, "get", lambda url, timeout: _FakeResponse(200, "application/json", "{not json"))
    with pytest.raises(ValueError):
        http_get("http://localhost/")
