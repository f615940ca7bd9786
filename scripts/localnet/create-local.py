"""Launch local networks with cross-chain relaying and export them to a JSON file.

Runs until Ctrl+C, which removes the exported file.

Environment variables
---------------------

``CHAINS``
    Comma-separated chain names. Defaults to ``Moonbeam,Avalanche,Fantom,Ethereum,Polygon``.

``PORT``
    Port of the JSON-RPC proxy. Defaults to ``8500``.

``ACCOUNTS_TO_FUND``
    Comma-separated addresses to fund on every network.

``FUND_AMOUNT``
    Native tokens per funded account, in ether. Defaults to ``100``.

``RELAY_INTERVAL``
    Seconds between relay rounds. Defaults to ``2``.

``CHAIN_OUTPUT_PATH``
    Where to write the chain list. Defaults to ``./local.json``.

``LOCALNET_ARTIFACTS_DIR``
    Folder with compiled gateway contracts. Defaults to compiling
    the bundled contracts with ``forge``.

Example:

.. code-block:: shell

    CHAINS=Ethereum,Avalanche \\
    ACCOUNTS_TO_FUND=0x70997970C51812dc3A010C7d01b50e0d17dc79C8 \\
    python scripts/localnet/create-local.py
"""

import logging
import os
import threading
from decimal import Decimal

from tabulate import tabulate
from web3 import Web3

from eth_localnet.export import CreateLocalOptions, create_and_export, destroy_exported
from eth_localnet.relay import RelayData
from eth_localnet.utils import setup_console_logging

logger = logging.getLogger(__name__)


def _split(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def log_relay(relay_data: RelayData):
    for call in relay_data.call_contract.values():
        if call.executed:
            logger.info("Relayed %s -> %s %s", call.source_chain, call.destination_chain, call.destination_address)
        else:
            logger.warning("Relay %s -> %s failed: %s", call.source_chain, call.destination_chain, call.error)


def main():
    setup_console_logging(default_log_level=os.environ.get("LOG_LEVEL", "info"))

    options = CreateLocalOptions(
        chains=_split(os.environ.get("CHAINS", "")),
        port=int(os.environ.get("PORT", "8500")),
        accounts_to_fund=_split(os.environ.get("ACCOUNTS_TO_FUND", "")),
        fund_amount=Web3.to_wei(Decimal(os.environ.get("FUND_AMOUNT", "100")), "ether"),
        relay_interval=float(os.environ.get("RELAY_INTERVAL", "2")),
        chain_output_path=os.environ.get("CHAIN_OUTPUT_PATH", "./local.json"),
        after_relay=log_relay,
    )

    try:
        chains = create_and_export(options)
        table = [[c["name"], c["chainId"], c["rpc"], c["gateway"]] for c in chains]
        print(tabulate(table, headers=["Chain", "Chain id", "RPC", "Gateway"], tablefmt="simple"))
        print(f"Chain list written to {options.chain_output_path}, press Ctrl+C to stop")
        threading.Event().wait()
    finally:
        destroy_exported()


if __name__ == "__main__":
    main()
