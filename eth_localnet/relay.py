"""Relay cross-chain contract calls between local networks.

One relay round:

1. Read new ``ContractCall`` events from the gateway of every network,
   and the gas payment events from every gas receiver

2. On each destination network, approve all new calls with a single
   ``execute()`` batch signed by the network operator

3. Call ``execute(commandId, sourceChain, sourceAddress, payload)`` on
   each destination contract

Calls whose approval fails are kept and approved again on the next round.
The gateway skips command ids it has already executed.

:py:func:`eth_localnet.export.create_and_export` runs :py:func:`relay`
on a timer. You can also call it by hand in tests after sending
a message, to have it delivered synchronously.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field

import requests
from eth_abi import encode
from eth_typing import HexAddress, HexStr
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import Web3Exception

from eth_localnet.abi import EXECUTABLE_ABI
from eth_localnet.helpers import get_log_id, get_signed_execute_input
from eth_localnet.network import Network, networks
from eth_localnet.tx import TransactionFailed, transact_with_contract

logger = logging.getLogger(__name__)

#: Gateway command that approves an incoming contract call
APPROVE_CONTRACT_CALL = "approveContractCall"

#: Fixed gas limit for destination ``execute()`` calls, no gas estimation
EXECUTE_GAS_LIMIT = 5_000_000

#: Approval errors that leave the calls queued for the next round
APPROVE_ERRORS = (TransactionFailed, Web3Exception, requests.RequestException)

#: Decoded ``NativeGasPaidForContractCall`` events seen by the relayer
gas_logs: list[dict] = []

#: Decoded ``NativeGasPaidForContractCallWithToken`` events seen by the relayer
gas_logs_with_token: list[dict] = []

_relay_lock = threading.Lock()


@dataclass(slots=True)
class RelayedCall:
    """A contract call travelling from one network to another."""

    #: Gateway command id, derived from the source log
    command_id: HexStr

    source_chain: str

    #: Checksummed address of the contract that called the gateway
    source_address: HexAddress

    destination_chain: str

    #: As given by the sender, not validated
    destination_address: str

    payload: bytes

    payload_hash: HexStr

    source_tx_hash: HexStr

    source_event_index: int

    #: Hash of the destination ``execute()`` transaction, once executed
    execute_tx_hash: HexStr | None = None

    #: Why the destination ``execute()`` failed
    error: str | None = None

    @property
    def executed(self) -> bool:
        return self.execute_tx_hash is not None

    def encode_approve_params(self) -> bytes:
        """Parameters of the ``approveContractCall`` gateway command."""
        return encode(
            ["string", "string", "address", "bytes32", "bytes32", "uint256"],
            [
                self.source_chain,
                self.source_address,
                Web3.to_checksum_address(self.destination_address),
                HexBytes(self.payload_hash),
                HexBytes(self.source_tx_hash),
                self.source_event_index,
            ],
        )


@dataclass(slots=True)
class RelayData:
    """What a relay round did."""

    #: Relayed contract calls by command id
    call_contract: dict[HexStr, RelayedCall] = field(default_factory=dict)

    #: Gas payment events seen this round
    gas_paid: list[dict] = field(default_factory=list)

    #: Gas payment events with token seen this round
    gas_paid_with_token: list[dict] = field(default_factory=list)

    #: Networks whose events were read, name -> last block read
    scanned: dict[str, int] = field(default_factory=dict)


#: Calls read from a source gateway, kept until their approval transaction succeeds
unapproved_calls: list[RelayedCall] = []


def encode_gateway_commands(chain_id: int, command_ids: list[HexStr], commands: list[str], params: list[bytes]) -> bytes:
    """Encode the ``data`` part of gateway ``execute()`` input."""
    assert len(command_ids) == len(commands) == len(params), "Command ids, commands and params must be same length"
    return encode(
        ["uint256", "bytes32[]", "string[]", "bytes[]"],
        [chain_id, [HexBytes(c) for c in command_ids], commands, params],
    )


def is_valid_destination_address(address: str) -> bool:
    return Web3.is_address(address)


def _log_to_dict(log) -> dict:
    args = dict(log["args"])
    for key, value in args.items():
        if isinstance(value, (bytes, HexBytes)):
            args[key] = HexBytes(value).to_0x_hex()
    return {
        "event": log["event"],
        "args": args,
        "blockNumber": log["blockNumber"],
        "transactionHash": HexBytes(log["transactionHash"]).to_0x_hex(),
        "logIndex": log["logIndex"],
        "address": log["address"],
    }


def fetch_contract_calls(network: Network, from_block: int, to_block: int) -> list[RelayedCall]:
    """Read outgoing contract calls from the gateway of ``network``."""
    logs = network.gateway.events.ContractCall().get_logs(from_block=from_block, to_block=to_block)
    calls = []
    for log in logs:
        args = log["args"]
        calls.append(
            RelayedCall(
                command_id=get_log_id(network.name, log),
                source_chain=network.name,
                source_address=Web3.to_checksum_address(args["sender"]),
                destination_chain=args["destinationChain"],
                destination_address=args["destinationContractAddress"],
                payload=bytes(args["payload"]),
                payload_hash=HexBytes(args["payloadHash"]).to_0x_hex(),
                source_tx_hash=HexBytes(log["transactionHash"]).to_0x_hex(),
                source_event_index=log["logIndex"],
            )
        )
    return calls


def fetch_gas_logs(network: Network, from_block: int, to_block: int) -> tuple[list[dict], list[dict]]:
    """Read gas payments from the gas receiver of ``network``.

    :return:
        Tuple (native gas payments, native gas payments with token)
    """
    events = network.gas_receiver.events
    paid = events.NativeGasPaidForContractCall().get_logs(from_block=from_block, to_block=to_block)
    paid_with_token = events.NativeGasPaidForContractCallWithToken().get_logs(from_block=from_block, to_block=to_block)
    return [_log_to_dict(log) for log in paid], [_log_to_dict(log) for log in paid_with_token]


def approve_calls(network: Network, calls: list[RelayedCall]) -> HexStr:
    """Approve incoming calls on the destination gateway in one batch.

    :return:
        Transaction hash of the gateway ``execute()``
    """
    assert calls, "Nothing to approve"
    data = encode_gateway_commands(
        network.chain_id,
        [c.command_id for c in calls],
        [APPROVE_CONTRACT_CALL] * len(calls),
        [c.encode_approve_params() for c in calls],
    )
    execute_input = get_signed_execute_input(data, network.operator_wallet)
    receipt = transact_with_contract(network.web3, network.relayer_wallet, network.gateway.functions.execute(execute_input))
    tx_hash = receipt["transactionHash"].to_0x_hex()
    logger.info("Approved %d calls on %s: %s", len(calls), network.name, tx_hash)
    return tx_hash


def execute_call(network: Network, call: RelayedCall):
    """Deliver an approved call to its destination contract.

    Failures are recorded in :py:attr:`RelayedCall.error`, not raised.
    """
    contract = network.web3.eth.contract(address=Web3.to_checksum_address(call.destination_address), abi=EXECUTABLE_ABI)
    func = contract.functions.execute(
        HexBytes(call.command_id),
        call.source_chain,
        call.source_address,
        call.payload,
    )
    try:
        receipt = transact_with_contract(network.web3, network.relayer_wallet, func, {"gas": EXECUTE_GAS_LIMIT})
    except (TransactionFailed, Web3Exception) as e:
        call.error = str(e)
        logger.warning("Executing %s on %s failed: %s", call.command_id, network.name, e)
        return

    call.execute_tx_hash = receipt["transactionHash"].to_0x_hex()
    logger.info("Executed %s from %s on %s: %s", call.command_id, call.source_chain, network.name, call.execute_tx_hash)


def _destinations_by_name(network_list: list[Network]) -> dict[str, Network]:
    by_name = {}
    for network in network_list:
        key = network.name.lower()
        if key in by_name:
            logger.warning("Two networks named %s, %s replaces %s as relay destination", network.name, network, by_name[key])
        by_name[key] = network
    return by_name


def relay() -> RelayData:
    """Run one relay round over all registered networks.

    Calls whose approval fails stay in :py:data:`unapproved_calls`
    and are approved again on the next round.
    """
    with _relay_lock:
        relay_data = RelayData()
        current = list(networks)
        by_name = _destinations_by_name(current)

        for network in current:
            from_block = network.last_relayed_block + 1
            to_block = network.web3.eth.block_number
            if from_block > to_block:
                continue

            calls = fetch_contract_calls(network, from_block, to_block)
            paid, paid_with_token = fetch_gas_logs(network, from_block, to_block)
            network.last_relayed_block = to_block
            relay_data.scanned[network.name] = to_block

            gas_logs.extend(paid)
            gas_logs_with_token.extend(paid_with_token)
            relay_data.gas_paid.extend(paid)
            relay_data.gas_paid_with_token.extend(paid_with_token)

            for call in calls:
                if call.destination_chain.lower() not in by_name:
                    logger.warning("Call %s from %s to unknown chain %s, skipping", call.command_id, network.name, call.destination_chain)
                    continue
                if not is_valid_destination_address(call.destination_address):
                    logger.warning("Call %s from %s to invalid address %s, skipping", call.command_id, network.name, call.destination_address)
                    continue
                unapproved_calls.append(call)

        pending: dict[Network, list[RelayedCall]] = defaultdict(list)
        for call in list(unapproved_calls):
            destination = by_name.get(call.destination_chain.lower())
            if destination is None:
                logger.warning("Destination %s of call %s is gone, dropping the call", call.destination_chain, call.command_id)
                unapproved_calls.remove(call)
                continue
            pending[destination].append(call)

        for destination, calls in pending.items():
            try:
                approve_calls(destination, calls)
            except APPROVE_ERRORS as e:
                logger.warning("Approving %d calls on %s failed, retrying next round: %s", len(calls), destination.name, e)
                continue

            for call in calls:
                unapproved_calls.remove(call)
                relay_data.call_contract[call.command_id] = call
                execute_call(destination, call)

        return relay_data
