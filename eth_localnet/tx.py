"""Sign and broadcast transactions with local private keys.

Anvil only unlocks its own built-in accounts, the deterministic accounts
of a local network are signed here.
"""

import logging

from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3
from web3.contract.contract import ContractFunction
from web3.types import TxParams, TxReceipt

logger = logging.getLogger(__name__)


class TransactionFailed(Exception):
    """Transaction was mined but reverted."""


def _fill_tx(web3: Web3, account: LocalAccount, tx: dict) -> dict:
    tx = dict(tx)
    tx.setdefault("from", account.address)
    tx.setdefault("chainId", web3.eth.chain_id)
    tx.setdefault("nonce", web3.eth.get_transaction_count(account.address, "pending"))
    if "gasPrice" not in tx and "maxFeePerGas" not in tx:
        tx["gasPrice"] = web3.eth.gas_price
    if "gas" not in tx:
        tx["gas"] = web3.eth.estimate_gas(tx)
    return tx


def wait_and_check(web3: Web3, tx_hash: HexBytes, timeout: float = 120) -> TxReceipt:
    """Wait a transaction to be mined and check it did not revert.

    :raise TransactionFailed:
        If the receipt status is zero
    """
    receipt = web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    if receipt["status"] != 1:
        raise TransactionFailed(f"Transaction {tx_hash.to_0x_hex()} reverted on chain {web3.eth.chain_id}, receipt: {receipt}")
    return receipt


def send_transaction(web3: Web3, account: LocalAccount, tx: TxParams) -> TxReceipt:
    """Sign a raw transaction, broadcast it and wait for the receipt.

    Missing ``nonce``, ``chainId``, ``gas`` and ``gasPrice`` are filled from the node.

    :raise TransactionFailed:
        If the transaction reverted
    """
    filled = _fill_tx(web3, account, tx)
    signed = account.sign_transaction(filled)
    tx_hash = web3.eth.send_raw_transaction(signed.raw_transaction)
    logger.debug("Broadcasted %s from %s on chain %d", tx_hash.to_0x_hex(), account.address, filled["chainId"])
    return wait_and_check(web3, tx_hash)


def transact_with_contract(
    web3: Web3,
    account: LocalAccount,
    func: ContractFunction,
    tx_params: TxParams | None = None,
) -> TxReceipt:
    """Sign and broadcast a bound contract function call.

    Example:

    .. code-block:: python

        receipt = transact_with_contract(web3, network.relayer_wallet, gateway.functions.execute(payload))
    """
    tx_params = dict(tx_params or {})
    tx_params.setdefault("from", account.address)
    tx_params.setdefault("nonce", web3.eth.get_transaction_count(account.address, "pending"))
    tx = func.build_transaction(tx_params)
    return send_transaction(web3, account, tx)
