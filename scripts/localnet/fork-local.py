"""Fork public chains, relay cross-chain calls between the forks and export them to a JSON file.

Runs until Ctrl+C, which removes the exported file.

Environment variables
---------------------

``NETWORK``
    ``mainnet`` (default) or ``testnet``.

``CHAINS``
    Comma-separated chain names to fork. Defaults to all chains of ``NETWORK``.

``JSON_RPC_<CHAIN>``, ``JSON_RPC_<CHAIN>_TESTNET``
    Fork source RPC overrides, e.g. ``JSON_RPC_ETHEREUM``.
    Public RPCs are used if not given.

``FORK_BLOCK_NUMBER``
    Optional block number to fork at. Only makes sense with a single chain.

``PORT``, ``ACCOUNTS_TO_FUND``, ``FUND_AMOUNT``, ``RELAY_INTERVAL``, ``CHAIN_OUTPUT_PATH``
    As in ``create-local.py``.

Example:

.. code-block:: shell

    NETWORK=mainnet CHAINS=Ethereum,Polygon \\
    JSON_RPC_ETHEREUM="https://..." \\
    python scripts/localnet/fork-local.py
"""

import logging
import os
import threading
from decimal import Decimal

from tabulate import tabulate
from web3 import Web3

from eth_localnet.export import CloneLocalOptions, destroy_exported, fork_and_export
from eth_localnet.network import NetworkOptions
from eth_localnet.utils import setup_console_logging

logger = logging.getLogger(__name__)


def _split(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def main():
    setup_console_logging(default_log_level=os.environ.get("LOG_LEVEL", "info"))

    fork_block_number = os.environ.get("FORK_BLOCK_NUMBER")

    options = CloneLocalOptions(
        env=os.environ.get("NETWORK", "mainnet").lower(),
        chains=_split(os.environ.get("CHAINS", "")),
        port=int(os.environ.get("PORT", "8500")),
        accounts_to_fund=_split(os.environ.get("ACCOUNTS_TO_FUND", "")),
        fund_amount=Web3.to_wei(Decimal(os.environ.get("FUND_AMOUNT", "100")), "ether"),
        relay_interval=float(os.environ.get("RELAY_INTERVAL", "2")),
        chain_output_path=os.environ.get("CHAIN_OUTPUT_PATH", "./local.json"),
        network_options=NetworkOptions(
            fork_block_number=int(fork_block_number) if fork_block_number else None,
        ),
    )

    try:
        chains = fork_and_export(options)
        table = [[c["name"], c["chainId"], c["rpc"], c["tokenSymbol"]] for c in chains]
        print(tabulate(table, headers=["Chain", "Chain id", "RPC", "Token"], tablefmt="simple"))
        print(f"Chain list written to {options.chain_output_path}, press Ctrl+C to stop")
        threading.Event().wait()
    finally:
        destroy_exported()


if __name__ == "__main__":
    main()
