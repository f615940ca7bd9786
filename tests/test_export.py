"""Export local networks end to end: create, fund, serve, relay, write file, tear down."""

import json
import signal
import time

import pytest
from eth_account import Account
from web3 import HTTPProvider, Web3

from eth_localnet import export
from eth_localnet.abi import find_artifact
from eth_localnet.export import CreateLocalOptions, create_and_export, destroy_exported
from eth_localnet.helpers import deploy_contract
from eth_localnet.network import networks
from eth_localnet.tx import transact_with_contract
from eth_localnet.utils import find_free_port, is_localhost_port_listening


@pytest.fixture()
def exported(artifacts_dir, tmp_path, teardown_networks):
    """Two exported networks with one funded account, relaying every 0.2 seconds."""
    funded = Account.create()
    relays = []
    callbacks = []
    port = find_free_port()
    options = CreateLocalOptions(
        chain_output_path=tmp_path / "out" / "local.json",
        accounts_to_fund=[funded.address],
        fund_amount=5 * 10**18,
        chains=["Ethereum", "Avalanche"],
        relay_interval=0.2,
        port=port,
        after_relay=relays.append,
        callback=lambda network, info: callbacks.append((network, info)),
        artifacts_dir=artifacts_dir,
    )
    chains = create_and_export(options)
    return {
        "options": options,
        "chains": chains,
        "funded": funded,
        "relays": relays,
        "callbacks": callbacks,
    }


def test_exported_file(exported):
    options = exported["options"]
    port = options.port

    data = json.loads(options.chain_output_path.read_text())
    assert data == exported["chains"]
    assert [c["name"] for c in data] == ["Ethereum", "Avalanche"]
    assert [c["rpc"] for c in data] == [f"http://localhost:{port}/0", f"http://localhost:{port}/1"]
    assert data[0]["chainId"] == 2500
    assert data[1]["chainId"] == 2501
    assert data[0]["tokenSymbol"] == "ETH"
    assert data[1]["tokenSymbol"] == "AVAX"
    assert data[0]["gateway"] == networks[0].gateway.address
    assert data[0]["constAddressDeployer"] == data[1]["constAddressDeployer"]

    # Callback got the same record for each network
    assert [info for _, info in exported["callbacks"]] == data
    assert [network for network, _ in exported["callbacks"]] == networks


def test_rpc_proxy_and_funding(exported):
    """Exported rpc URLs reach the right node and the funded account has its balance."""
    funded = exported["funded"]
    for chain in exported["chains"]:
        web3 = Web3(HTTPProvider(chain["rpc"]))
        assert web3.eth.chain_id == chain["chainId"]
        assert web3.eth.get_balance(funded.address) == 5 * 10**18


def test_timer_relays_messages(exported, artifacts_dir):
    ethereum, avalanche = networks
    artifact = find_artifact(artifacts_dir, "MessageReceiver")
    source = deploy_contract(ethereum.web3, ethereum.user_wallets[0], artifact, [ethereum.gateway.address])
    destination = deploy_contract(avalanche.web3, avalanche.user_wallets[0], artifact, [avalanche.gateway.address])

    transact_with_contract(
        ethereum.web3,
        ethereum.user_wallets[0],
        source.functions.send("Avalanche", destination.address, "over the timer"),
    )

    relayed = []
    for _ in range(100):
        relayed = [c for r in list(exported["relays"]) for c in r.call_contract.values()]
        if relayed:
            break
        time.sleep(0.1)

    assert len(relayed) == 1
    assert relayed[0].executed, relayed[0].error
    assert destination.functions.message().call() == "over the timer"


def test_destroy(exported):
    port = exported["options"].port
    launches = [n.launch for n in networks]
    output = exported["options"].chain_output_path
    our_handler = signal.getsignal(signal.SIGINT)

    destroy_exported()

    assert networks == []
    assert export._timer is None
    assert not is_localhost_port_listening(port)
    assert all(launch.closed for launch in launches)
    # File stays, only Ctrl+C removes it
    assert output.exists()
    assert signal.getsignal(signal.SIGINT) is not our_handler


def test_sigint_removes_output(exported):
    output = exported["options"].chain_output_path
    handler = signal.getsignal(signal.SIGINT)

    with pytest.raises(SystemExit):
        handler(signal.SIGINT, None)

    assert not output.exists()
