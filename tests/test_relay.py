"""Relay contract calls between two local networks.

Uses the bundled ``MessageReceiver`` example contract on both sides.
"""

import pytest
from web3.contract import Contract

from eth_localnet.abi import find_artifact
from eth_localnet.helpers import deploy_contract
from eth_localnet.network import Network, NetworkOptions, create_network, get_network, networks
from eth_localnet.relay import gas_logs, gas_logs_with_token, relay
from eth_localnet.tx import transact_with_contract


@pytest.fixture()
def ethereum(artifacts_dir, teardown_networks) -> Network:
    return create_network("Ethereum", options=NetworkOptions(artifacts_dir=artifacts_dir))


@pytest.fixture()
def avalanche(artifacts_dir, ethereum) -> Network:
    return create_network("Avalanche", options=NetworkOptions(artifacts_dir=artifacts_dir))


def _deploy_receiver(network: Network, artifacts_dir) -> Contract:
    artifact = find_artifact(artifacts_dir, "MessageReceiver")
    return deploy_contract(network.web3, network.user_wallets[0], artifact, [network.gateway.address])


def _send(network: Network, receiver: Contract, destination_chain: str, destination_address: str, message: str):
    transact_with_contract(
        network.web3,
        network.user_wallets[0],
        receiver.functions.send(destination_chain, destination_address, message),
    )


def test_networks_registered(ethereum, avalanche):
    """Created networks get consecutive chain ids and the deterministic wallet layout."""
    assert networks == [ethereum, avalanche]
    assert ethereum.chain_id == 2500
    assert avalanche.chain_id == 2501
    assert get_network("avalanche") is avalanche
    assert get_network("Solana") is None

    assert ethereum.owner_wallet.address != avalanche.owner_wallet.address
    assert ethereum.gateway.functions.operator().call() == ethereum.operator_wallet.address
    assert len(ethereum.admin_wallets) == 6
    assert len(ethereum.user_wallets) == 10
    assert ethereum.web3.eth.get_balance(ethereum.user_wallets[0].address) > 10**30

    info = ethereum.get_info()
    assert info["name"] == "Ethereum"
    assert info["chainId"] == 2500
    assert info["gateway"] == ethereum.gateway.address
    assert info["gasReceiver"] == ethereum.gas_receiver.address


def test_const_address_deployer_same_everywhere(ethereum, avalanche):
    """Deployer and its CREATE2 targets have the same address on every network."""
    assert ethereum.const_address_deployer.address == avalanche.const_address_deployer.address
    assert ethereum.get_info()["constAddressDeployer"] == avalanche.get_info()["constAddressDeployer"]

    bytecode = b"\x60\x00\x60\x00\xf3"
    salt = b"\x01" * 32
    sender = ethereum.user_wallets[0].address
    on_ethereum = ethereum.const_address_deployer.functions.deployedAddress(bytecode, sender, salt).call()
    on_avalanche = avalanche.const_address_deployer.functions.deployedAddress(bytecode, sender, salt).call()
    assert on_ethereum == on_avalanche


def test_relay_message(ethereum, avalanche, artifacts_dir):
    """Message sent on Ethereum is executed on Avalanche after one relay round."""
    source = _deploy_receiver(ethereum, artifacts_dir)
    destination = _deploy_receiver(avalanche, artifacts_dir)

    _send(ethereum, source, "Avalanche", destination.address, "hello")

    relay_data = relay()

    assert len(relay_data.call_contract) == 1
    call = next(iter(relay_data.call_contract.values()))
    assert call.source_chain == "Ethereum"
    assert call.source_address == source.address
    assert call.executed, call.error

    assert destination.functions.message().call() == "hello"
    assert destination.functions.sourceChain().call() == "Ethereum"
    assert destination.functions.sourceAddress().call() == source.address
    assert avalanche.gateway.functions.isCommandExecuted(call.command_id).call()

    # Nothing new, nothing relayed again
    assert relay().call_contract == {}


def test_relay_both_directions(ethereum, avalanche, artifacts_dir):
    eth_receiver = _deploy_receiver(ethereum, artifacts_dir)
    avax_receiver = _deploy_receiver(avalanche, artifacts_dir)

    _send(ethereum, eth_receiver, "Avalanche", avax_receiver.address, "to avalanche")
    _send(avalanche, avax_receiver, "Ethereum", eth_receiver.address, "to ethereum")
    _send(ethereum, eth_receiver, "Avalanche", avax_receiver.address, "to avalanche again")

    relay_data = relay()

    assert len(relay_data.call_contract) == 3
    assert all(c.executed for c in relay_data.call_contract.values())
    assert eth_receiver.functions.message().call() == "to ethereum"
    assert avax_receiver.functions.message().call() == "to avalanche again"


def test_unknown_destination_skipped(ethereum, avalanche, artifacts_dir):
    source = _deploy_receiver(ethereum, artifacts_dir)
    _send(ethereum, source, "Solana", source.address, "lost")
    _send(ethereum, source, "Avalanche", "not an address", "lost")

    relay_data = relay()
    assert relay_data.call_contract == {}
    assert relay_data.scanned["Ethereum"] == ethereum.web3.eth.block_number


def test_failing_execute_recorded(ethereum, avalanche, artifacts_dir):
    """Destination without execute() does not break the relay round."""
    source = _deploy_receiver(ethereum, artifacts_dir)
    destination = _deploy_receiver(avalanche, artifacts_dir)

    # Gas receiver has no execute(bytes32,string,string,bytes), the call reverts
    _send(ethereum, source, "Avalanche", avalanche.gas_receiver.address, "bounce")
    _send(ethereum, source, "Avalanche", destination.address, "delivered")

    relay_data = relay()

    calls = list(relay_data.call_contract.values())
    failed = [c for c in calls if not c.executed]
    succeeded = [c for c in calls if c.executed]
    assert len(failed) == 1
    assert failed[0].error
    assert len(succeeded) == 1
    assert destination.functions.message().call() == "delivered"


def test_gas_payments_collected(ethereum, avalanche):
    payer = ethereum.user_wallets[1]
    func = ethereum.gas_receiver.functions.payNativeGasForContractCall(
        payer.address,
        "Avalanche",
        avalanche.gateway.address,
        b"payload",
        payer.address,
    )
    transact_with_contract(ethereum.web3, payer, func, {"value": 1000})

    relay_data = relay()

    assert len(relay_data.gas_paid) == 1
    assert relay_data.gas_paid[0]["args"]["gasFeeAmount"] == 1000
    assert relay_data.gas_paid[0]["args"]["destinationChain"] == "Avalanche"
    assert gas_logs == relay_data.gas_paid


def test_gas_payments_with_token_collected(ethereum, avalanche):
    payer = ethereum.user_wallets[2]
    func = ethereum.gas_receiver.functions.payNativeGasForContractCallWithToken(
        payer.address,
        "Avalanche",
        avalanche.gateway.address,
        b"payload",
        "USDC",
        25 * 10**6,
        payer.address,
    )
    transact_with_contract(ethereum.web3, payer, func, {"value": 777})

    relay_data = relay()

    assert relay_data.gas_paid == []
    assert len(relay_data.gas_paid_with_token) == 1
    args = relay_data.gas_paid_with_token[0]["args"]
    assert args["symbol"] == "USDC"
    assert args["amount"] == 25 * 10**6
    assert args["gasFeeAmount"] == 777
    assert relay_data.gas_paid_with_token[0]["event"] == "NativeGasPaidForContractCallWithToken"
    assert gas_logs_with_token == relay_data.gas_paid_with_token
