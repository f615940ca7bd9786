"""Spin up local networks and export their connection details.

:py:func:`create_and_export` launches blank networks,
:py:func:`fork_and_export` forks public chains. Both then:

- fund the given accounts on every network
- serve the networks at ``http://localhost:{port}/{i}``
- relay cross-chain calls every ``relay_interval`` seconds
- write the chain list to ``chain_output_path`` for other tooling,
  and remove it again on Ctrl+C

Example:

.. code-block:: python

    from eth_localnet.export import CreateLocalOptions, create_and_export, destroy_exported

    chains = create_and_export(CreateLocalOptions(
        chains=["Ethereum", "Avalanche"],
        accounts_to_fund=["0x..."],
    ))
    try:
        ...
    finally:
        destroy_exported()

The output file looks like::

    [
      {
        "name": "Ethereum",
        "chainId": 2500,
        "rpc": "http://localhost:8500/0",
        "gateway": "0x...",
        "gasReceiver": "0x...",
        "constAddressDeployer": "0x...",
        "tokenName": "Ether",
        "tokenSymbol": "ETH"
      }
    ]
"""

import logging
import signal
import sys
import threading
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Callable

from tqdm_loggable.auto import tqdm
from web3 import Web3

from eth_localnet.chains import get_chain_info, get_chains
from eth_localnet.helpers import set_json
from eth_localnet.network import Network, NetworkOptions, create_network, fork_network, stop_all
from eth_localnet.relay import RelayData, gas_logs, gas_logs_with_token, relay, unapproved_calls
from eth_localnet.server import listen

logger = logging.getLogger(__name__)

#: Chains :py:func:`create_and_export` launches when none are given
DEFAULT_CHAINS = ["Moonbeam", "Avalanche", "Fantom", "Ethereum", "Polygon"]

#: 100 native tokens
DEFAULT_FUND_AMOUNT = Web3.to_wei(100, "ether")

DEFAULT_PORT = 8500

#: Seconds between relay rounds
DEFAULT_RELAY_INTERVAL = 2.0

DEFAULT_CHAIN_OUTPUT_PATH = "./local.json"


@dataclass(slots=True)
class CreateLocalOptions:
    """Options for :py:func:`create_and_export`.

    Falsy values mean "use the default", e.g. ``port=0`` serves at 8500.
    """

    #: Where to write the chain list
    chain_output_path: str | Path = DEFAULT_CHAIN_OUTPUT_PATH

    #: Addresses to give native tokens on every network
    accounts_to_fund: list[str] = field(default_factory=list)

    #: Amount in wei
    fund_amount: int = DEFAULT_FUND_AMOUNT

    #: Chain names to launch
    chains: list[str] = field(default_factory=lambda: list(DEFAULT_CHAINS))

    #: Seconds between relay rounds
    relay_interval: float = DEFAULT_RELAY_INTERVAL

    #: Port of the JSON-RPC proxy
    port: int = DEFAULT_PORT

    #: Called with the result of every relay round
    after_relay: Callable[[RelayData], None] | None = None

    #: Called for each network after it is set up and funded
    callback: Callable[[Network, dict], None] | None = None

    #: Compiled contracts, see :py:func:`eth_localnet.abi.resolve_artifacts_dir`
    artifacts_dir: Path | None = None


@dataclass(slots=True)
class CloneLocalOptions:
    """Options for :py:func:`fork_and_export`.

    Falsy values mean "use the default".
    """

    chain_output_path: str | Path = DEFAULT_CHAIN_OUTPUT_PATH

    accounts_to_fund: list[str] = field(default_factory=list)

    fund_amount: int = DEFAULT_FUND_AMOUNT

    #: ``mainnet`` or ``testnet``
    env: str = "mainnet"

    #: Chain names to fork, empty forks every chain of ``env``
    chains: list[str] = field(default_factory=list)

    relay_interval: float = DEFAULT_RELAY_INTERVAL

    port: int = DEFAULT_PORT

    network_options: NetworkOptions = field(default_factory=NetworkOptions)

    #: Compiled contracts, used when ``network_options`` does not name a folder
    artifacts_dir: Path | None = None

    after_relay: Callable[[RelayData], None] | None = None

    callback: Callable[[Network, dict], None] | None = None


def _merge_defaults(options, options_class):
    """Replace falsy option values with the defaults of the class."""
    if options is None:
        return options_class()
    defaults = options_class()
    for f in fields(options_class):
        if not getattr(options, f.name):
            setattr(options, f.name, getattr(defaults, f.name))
    return options


class RelayTimer(threading.Thread):
    """Call :py:func:`relay` every ``interval`` seconds until stopped."""

    def __init__(self, interval: float, after_relay: Callable[[RelayData], None] | None = None):
        super().__init__(name="relay-timer", daemon=True)
        assert interval > 0, f"Got {interval}"
        self.interval = interval
        self.after_relay = after_relay
        self.stopped = threading.Event()

    def run(self):
        while not self.stopped.wait(self.interval):
            try:
                relay_data = relay()
                if self.after_relay:
                    self.after_relay(relay_data)
            except Exception as e:
                # Relay errors must not stop the timer
                logger.exception("Relay round failed: %s", e)

    def stop(self):
        self.stopped.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout=self.interval + 30)


_timer: RelayTimer | None = None

#: SIGINT handler that was active before we installed ours
_previous_sigint_handler = None


def _start_relay_timer(interval: float, after_relay: Callable[[RelayData], None] | None):
    global _timer
    if _timer is not None:
        _timer.stop()
    _timer = RelayTimer(interval, after_relay)
    _timer.start()


def _install_sigint_handler(chain_output_path: Path):
    """Remove ``chain_output_path`` on Ctrl+C.

    Python only lets the main thread install signal handlers,
    exports from other threads leave SIGINT alone.
    """
    global _previous_sigint_handler

    if threading.current_thread() is not threading.main_thread():
        logger.warning("Exporting from thread %s, %s is not removed on Ctrl+C", threading.current_thread().name, chain_output_path)
        return

    def _on_sigint(signum, frame):
        logger.info("Interrupted, removing %s", chain_output_path)
        chain_output_path.unlink(missing_ok=True)
        sys.exit()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    if _previous_sigint_handler is None:
        _previous_sigint_handler = previous


def _export_info(network: Network, port: int, index: int) -> dict:
    """Chain record of the output file, ``rpc`` points to the proxy."""
    return {
        "name": network.name,
        "chainId": network.chain_id,
        "rpc": f"http://localhost:{port}/{index}",
        **network.get_info(),
    }


def _fund_accounts(network: Network, accounts: list[str], amount: int):
    for account in accounts:
        network.fund(account, amount)


def _export(
    chains_local: list[dict],
    exported: list[Network],
    port: int,
    relay_interval: float,
    after_relay: Callable[[RelayData], None] | None,
    chain_output_path: str | Path,
) -> list[dict]:
    listen(port, network_list=exported)
    _start_relay_timer(relay_interval, after_relay)
    output = Path(chain_output_path)
    set_json(chains_local, output)
    _install_sigint_handler(output)
    logger.info("Exported %d chains to %s", len(chains_local), output)
    return chains_local


def create_and_export(options: CreateLocalOptions | None = None) -> list[dict]:
    """Launch local networks, fund accounts, start relaying and write the chain list.

    :return:
        The exported chain list
    """
    options = _merge_defaults(options, CreateLocalOptions)
    network_options = NetworkOptions(artifacts_dir=options.artifacts_dir)

    chains_local = []
    exported = []
    for i, name in enumerate(tqdm(options.chains, desc="Creating networks", unit="chain")):
        testnet = get_chain_info(name, "testnet")
        network = create_network(
            name=name,
            seed=name,
            options=network_options,
            token_name=testnet.token_name if testnet else None,
            token_symbol=testnet.token_symbol if testnet else None,
        )
        info = _export_info(network, options.port, i)
        chains_local.append(info)
        exported.append(network)
        _fund_accounts(network, options.accounts_to_fund, options.fund_amount)
        if options.callback:
            options.callback(network, info)

    return _export(chains_local, exported, options.port, options.relay_interval, options.after_relay, options.chain_output_path)


def fork_and_export(options: CloneLocalOptions | None = None) -> list[dict]:
    """Fork public chains, fund accounts, start relaying and write the chain list.

    :raise ValueError:
        If ``env`` is not ``mainnet`` or ``testnet``

    :return:
        The exported chain list
    """
    options = _merge_defaults(options, CloneLocalOptions)

    if options.env not in ("mainnet", "testnet"):
        raise ValueError("need to specify mainnet or testnet")

    chains_raw = get_chains(options.env)
    if options.chains:
        wanted = set(options.chains)
        chains = [c for c in chains_raw if c.name in wanted]
    else:
        chains = chains_raw

    network_options = options.network_options
    if options.artifacts_dir and not network_options.artifacts_dir:
        network_options = replace(network_options, artifacts_dir=options.artifacts_dir)

    chains_local = []
    exported = []
    for i, chain in enumerate(tqdm(chains, desc="Forking networks", unit="chain")):
        network = fork_network(chain, network_options)
        info = _export_info(network, options.port, i)
        chains_local.append(info)
        exported.append(network)
        _fund_accounts(network, options.accounts_to_fund, options.fund_amount)
        if options.callback:
            options.callback(network, info)

    return _export(chains_local, exported, options.port, options.relay_interval, options.after_relay, options.chain_output_path)


def destroy_exported():
    """Stop networks, proxy and relay timer started by the export functions.

    Safe to call even if nothing was exported.
    """
    global _timer, _previous_sigint_handler

    if _timer is not None:
        _timer.stop()
        _timer = None

    stop_all()

    gas_logs.clear()
    gas_logs_with_token.clear()
    unapproved_calls.clear()

    if _previous_sigint_handler is not None:
        signal.signal(signal.SIGINT, _previous_sigint_handler)
        _previous_sigint_handler = None
