"""Anvil integration.

Launch `Anvil <https://book.getfoundry.sh/anvil/>`__ nodes, either as blank
chains or as mainnet/testnet forks, and talk to them with Anvil cheat code
RPC methods.

Example:

.. code-block:: python

    from eth_localnet.anvil import launch_anvil, set_balance

    launch = launch_anvil(chain_id=2500)
    try:
        web3 = launch.create_web3()
        set_balance(web3, "0x000000000000000000000000000000000000dEaD", 10**18)
    finally:
        launch.close()
"""

import logging
import shutil
import time
from dataclasses import dataclass, field
from subprocess import DEVNULL, PIPE

import psutil
import requests
from eth_typing import HexAddress
from web3 import HTTPProvider, Web3

from eth_localnet.utils import find_free_port, is_localhost_port_listening, shutdown_hard

logger = logging.getLogger(__name__)


class AnvilLaunchFailed(Exception):
    """Anvil did not come up."""


@dataclass
class AnvilLaunch:
    """Control a running Anvil process."""

    #: Which port was bound by Anvil
    port: int

    #: Used command-line to spin up Anvil
    cmd: list[str]

    #: Where does Anvil listen to JSON-RPC
    json_rpc_url: str

    #: UNIX process that we opened
    process: psutil.Popen

    #: Chain id reported by the node after launch
    chain_id: int

    #: Upstream RPC if this is a fork
    fork_url: str | None = None

    closed: bool = field(default=False)

    def create_web3(self, request_timeout: float = 60.0) -> Web3:
        """Connect to this node."""
        return Web3(HTTPProvider(self.json_rpc_url, request_kwargs={"timeout": request_timeout}))

    def close(self, log_level: int | None = None, block=True, block_timeout=30) -> tuple[bytes, bytes]:
        """Close the background Anvil process.

        :param log_level:
            Dump Anvil messages to logging

        :param block:
            Block the execution until Anvil is gone

        :param block_timeout:
            How long time we try to kill Anvil until giving up.

        :return:
            Anvil stdout, stderr as string
        """
        if self.closed:
            return b"", b""
        self.closed = True
        stdout, stderr = shutdown_hard(
            self.process,
            log_level=log_level,
            block=block,
            block_timeout=block_timeout,
            check_port=self.port,
        )
        logger.info("Anvil shutdown %s", self.json_rpc_url)
        return stdout, stderr


def is_anvil_installed() -> bool:
    return shutil.which("anvil") is not None


def _fetch_chain_id(json_rpc_url: str) -> int | None:
    try:
        resp = requests.post(
            json_rpc_url,
            json={"jsonrpc": "2.0", "method": "eth_chainId", "params": [], "id": 1},
            timeout=5,
        )
        resp.raise_for_status()
        return int(resp.json()["result"], 16)
    except (requests.RequestException, KeyError, ValueError):
        return None


def launch_anvil(
    fork_url: str | None = None,
    port: int | None = None,
    chain_id: int | None = None,
    fork_block_number: int | None = None,
    gas_limit: int | None = None,
    block_time: int | None = None,
    unlocked_addresses: list[HexAddress | str] | None = None,
    host: str = "127.0.0.1",
    launch_wait_seconds: float = 20.0,
    attempts: int = 3,
    anvil_binary: str = "anvil",
) -> AnvilLaunch:
    """Start an Anvil node in a background process.

    - If ``fork_url`` is given, the node is a fork of that chain and
      keeps its chain id unless ``chain_id`` overrides it

    - Retries on another random port if the launch fails

    :param unlocked_addresses:
        Addresses to impersonate, so that you can send transactions from them
        without a private key.

    :param launch_wait_seconds:
        How long we wait the node to answer ``eth_chainId``.
        Forks need more time as they fetch the fork block from upstream.

    :raise AnvilLaunchFailed:
        If Anvil did not answer after all attempts.
    """

    assert attempts > 0
    anvil = shutil.which(anvil_binary)
    if anvil is None:
        raise AnvilLaunchFailed(f"{anvil_binary} not found in PATH, install Foundry: https://book.getfoundry.sh/getting-started/installation")

    last_output = ""

    for attempt in range(attempts):
        bind_port = port if port is not None else find_free_port()

        if is_localhost_port_listening(bind_port, host):
            # Something else would answer our readiness probe
            last_output = f"Port {bind_port} already in use"
            if port is not None:
                break
            continue

        cmd = [anvil, "--port", str(bind_port), "--host", host, "--silent"]
        if fork_url:
            cmd += ["--fork-url", fork_url]
        if fork_block_number is not None:
            assert fork_url, "fork_block_number needs fork_url"
            cmd += ["--fork-block-number", str(fork_block_number)]
        if chain_id is not None:
            cmd += ["--chain-id", str(chain_id)]
        if gas_limit is not None:
            cmd += ["--gas-limit", str(gas_limit)]
        if block_time is not None:
            cmd += ["--block-time", str(block_time)]

        json_rpc_url = f"http://{host}:{bind_port}"

        # Do not log the fork URL, it may contain an API key
        logger.info("Launching anvil at %s, fork: %s, attempt %d", json_rpc_url, "yes" if fork_url else "no", attempt + 1)

        process = psutil.Popen(cmd, stdin=DEVNULL, stdout=PIPE, stderr=PIPE)

        reported_chain_id = None
        deadline = time.time() + launch_wait_seconds
        while time.time() < deadline:
            if process.poll() is not None:
                break
            if is_localhost_port_listening(bind_port, host):
                reported_chain_id = _fetch_chain_id(json_rpc_url)
                if reported_chain_id is not None:
                    break
            time.sleep(0.1)

        if reported_chain_id is not None:
            launch = AnvilLaunch(
                port=bind_port,
                cmd=cmd,
                json_rpc_url=json_rpc_url,
                process=process,
                chain_id=reported_chain_id,
                fork_url=fork_url,
            )

            if unlocked_addresses:
                web3 = launch.create_web3()
                for address in unlocked_addresses:
                    make_anvil_custom_rpc_request(web3, "anvil_impersonateAccount", [Web3.to_checksum_address(address)])

            logger.info("Anvil up at %s, chain id %d", json_rpc_url, reported_chain_id)
            return launch

        stdout, stderr = shutdown_hard(process, block=False)
        last_output = (stdout + stderr).decode("utf-8", errors="replace")
        logger.warning("Anvil failed to start on port %d, output:\n%s", bind_port, last_output)

        if port is not None:
            # Caller asked a specific port, retrying the same one does not help
            break

    raise AnvilLaunchFailed(f"Could not launch anvil after {attempts} attempts, last output:\n{last_output}")


def fork_network_anvil(
    fork_url: str,
    unlocked_addresses: list[HexAddress | str] | None = None,
    fork_block_number: int | None = None,
    gas_limit: int | None = None,
    port: int | None = None,
    launch_wait_seconds: float = 60.0,
) -> AnvilLaunch:
    """Create a mainnet/testnet fork with Anvil.

    Thin wrapper around :py:func:`launch_anvil` with a longer launch wait,
    as the fork has to fetch the state from the upstream RPC.
    """
    assert fork_url.startswith(("http://", "https://", "ws://", "wss://")), f"Not a JSON-RPC URL: {fork_url}"
    return launch_anvil(
        fork_url=fork_url,
        unlocked_addresses=unlocked_addresses,
        fork_block_number=fork_block_number,
        gas_limit=gas_limit,
        port=port,
        launch_wait_seconds=launch_wait_seconds,
    )


def make_anvil_custom_rpc_request(web3: Web3, method: str, args: list | None = None) -> dict:
    """Call an Anvil cheat code method.

    :raise ValueError:
        If the node returned a JSON-RPC error
    """
    response = web3.provider.make_request(method, args or [])
    if "error" in response:
        raise ValueError(f"{method} failed: {response['error']}")
    return response.get("result")


def set_balance(web3: Web3, address: HexAddress | str, amount: int):
    """Set the native token balance of an address in wei."""
    assert type(amount) == int, f"Got {type(amount)}"
    make_anvil_custom_rpc_request(web3, "anvil_setBalance", [Web3.to_checksum_address(address), hex(amount)])


def mine(web3: Web3, blocks: int = 1):
    make_anvil_custom_rpc_request(web3, "anvil_mine", [hex(blocks)])
