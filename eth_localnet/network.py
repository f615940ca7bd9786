"""Local networks.

A :py:class:`Network` is an Anvil node with a set of deterministic
wallets and the three contracts the relayer needs:

- ``LocalGateway`` emits outgoing calls and approves incoming ones
- ``LocalGasReceiver`` records prepaid relaying gas
- ``ConstAddressDeployer`` gives the same contract address on every network

Created networks are kept in a module level registry, so that
:py:func:`eth_localnet.relay.relay` and :py:func:`eth_localnet.server.listen`
can find them. :py:func:`stop_all` shuts everything down.

Example:

.. code-block:: python

    from eth_localnet.network import create_network, stop_all

    ethereum = create_network("Ethereum")
    avalanche = create_network("Avalanche")
    try:
        print(ethereum.gateway.address, avalanche.gateway.address)
    finally:
        stop_all()
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

from eth_localnet.abi import find_artifact, resolve_artifacts_dir
from eth_localnet.anvil import AnvilLaunch, fork_network_anvil, launch_anvil, set_balance
from eth_localnet.chains import ChainInfo
from eth_localnet.helpers import default_accounts, deploy_contract
from eth_localnet.tx import send_transaction

logger = logging.getLogger(__name__)

#: Chain id of the first created network, following ones count up
FIRST_CHAIN_ID = 2500

#: Index of the first user wallet in the derived accounts
USER_WALLET_OFFSET = 10

#: How many admin wallets a network has
ADMIN_WALLET_COUNT = 6

#: Seed of the key that deploys ConstAddressDeployer on every network.
#: Deployed as the first transaction of that key, so the address is the same everywhere.
CONST_ADDRESS_DEPLOYER_SEED = "ConstAddressDeployer"


@dataclass(slots=True)
class NetworkOptions:
    """How to launch the node behind a network."""

    #: Fork at this block, latest if not given
    fork_block_number: int | None = None

    #: Block gas limit override
    gas_limit: int | None = None

    #: Anvil port, random free port if not given
    port: int | None = None

    #: Impersonated addresses on a fork, e.g. token whales
    unlocked_addresses: list[HexAddress | str] = field(default_factory=list)

    #: Folder with compiled LocalGateway, LocalGasReceiver, ConstAddressDeployer
    artifacts_dir: Path | None = None

    #: How many deterministic accounts to derive from the seed
    account_count: int = 20


class Network:
    """A running local network and its wallets and contracts."""

    def __init__(
        self,
        name: str,
        web3: Web3,
        launch: AnvilLaunch | None,
        wallets: list[LocalAccount],
        gateway: Contract,
        gas_receiver: Contract,
        const_address_deployer: Contract,
        token_name: str | None = None,
        token_symbol: str | None = None,
    ):
        assert len(wallets) > USER_WALLET_OFFSET, f"Need more than {USER_WALLET_OFFSET} wallets, got {len(wallets)}"
        self.name = name
        self.web3 = web3
        self.launch = launch
        self.chain_id = web3.eth.chain_id
        self.wallets = wallets
        self.owner_wallet = wallets[0]
        self.operator_wallet = wallets[1]
        self.relayer_wallet = wallets[2]
        self.admin_wallets = wallets[3 : 3 + ADMIN_WALLET_COUNT]
        self.user_wallets = wallets[USER_WALLET_OFFSET:]
        self.gateway = gateway
        self.gas_receiver = gas_receiver
        self.const_address_deployer = const_address_deployer
        self.token_name = token_name
        self.token_symbol = token_symbol

        #: Relayer has seen all events up to and including this block
        self.last_relayed_block = web3.eth.block_number

    def __repr__(self):
        return f"<Network {self.name} chain id {self.chain_id} at {self.rpc_url}>"

    @property
    def rpc_url(self) -> str | None:
        """Direct JSON-RPC URL of the node."""
        return self.launch.json_rpc_url if self.launch else None

    def fund(self, address: HexAddress | str, amount: int, sender: LocalAccount | None = None):
        """Send native tokens from the first user wallet and wait for the receipt."""
        sender = sender or self.user_wallets[0]
        to = Web3.to_checksum_address(address)
        send_transaction(self.web3, sender, {"to": to, "value": amount})
        logger.info("Funded %s with %d wei on %s", to, amount, self.name)

    def get_info(self) -> dict:
        return {
            "name": self.name,
            "chainId": self.chain_id,
            "gateway": self.gateway.address,
            "gasReceiver": self.gas_receiver.address,
            "constAddressDeployer": self.const_address_deployer.address,
            "tokenName": self.token_name,
            "tokenSymbol": self.token_symbol,
        }

    def close(self, log_level: int | None = None):
        if self.launch:
            self.launch.close(log_level=log_level)


#: All networks created in this process, in creation order
networks: list[Network] = []

_networks_lock = threading.Lock()


def _deploy_const_address_deployer(web3: Web3, artifacts_dir: Path) -> Contract:
    """Deploy ConstAddressDeployer from the key shared by all networks.

    Same key and nonce zero give the same deployer address on every network.
    """
    deployer = default_accounts(1, CONST_ADDRESS_DEPLOYER_SEED)[0]
    nonce = web3.eth.get_transaction_count(deployer.account.address)
    if nonce != 0:
        logger.warning("ConstAddressDeployer key already has nonce %d on chain %d, its address differs from other networks", nonce, web3.eth.chain_id)
    set_balance(web3, deployer.account.address, deployer.balance)
    return deploy_contract(web3, deployer.account, find_artifact(artifacts_dir, "ConstAddressDeployer"))


def _setup_network(
    name: str,
    launch: AnvilLaunch,
    seed: str,
    options: NetworkOptions,
    token_name: str | None,
    token_symbol: str | None,
) -> Network:
    web3 = launch.create_web3()

    accounts = default_accounts(options.account_count, seed)
    for a in accounts:
        set_balance(web3, a.account.address, a.balance)
    wallets = [a.account for a in accounts]

    artifacts_dir = resolve_artifacts_dir(options.artifacts_dir)
    const_address_deployer = _deploy_const_address_deployer(web3, artifacts_dir)

    owner, operator = wallets[0], wallets[1]
    gateway = deploy_contract(web3, owner, find_artifact(artifacts_dir, "LocalGateway"), [operator.address])
    gas_receiver = deploy_contract(web3, owner, find_artifact(artifacts_dir, "LocalGasReceiver"))

    network = Network(
        name=name,
        web3=web3,
        launch=launch,
        wallets=wallets,
        gateway=gateway,
        gas_receiver=gas_receiver,
        const_address_deployer=const_address_deployer,
        token_name=token_name,
        token_symbol=token_symbol,
    )

    with _networks_lock:
        networks.append(network)

    logger.info("Network %s ready: %s", name, network)
    return network


def create_network(
    name: str,
    seed: str | None = None,
    chain_id: int | None = None,
    options: NetworkOptions | None = None,
    token_name: str | None = None,
    token_symbol: str | None = None,
) -> Network:
    """Launch a blank local network.

    :param name:
        Chain name used in cross-chain messages

    :param seed:
        Seed for the deterministic wallets, defaults to ``name``

    :param chain_id:
        Defaults to 2500 + number of already created networks
    """
    options = options or NetworkOptions()
    if chain_id is None:
        chain_id = FIRST_CHAIN_ID + len(networks)

    launch = launch_anvil(
        chain_id=chain_id,
        port=options.port,
        gas_limit=options.gas_limit,
    )
    try:
        return _setup_network(name, launch, seed if seed is not None else name, options, token_name, token_symbol)
    except Exception:
        launch.close(log_level=logging.ERROR)
        raise


def fork_network(chain_info: ChainInfo, options: NetworkOptions | None = None) -> Network:
    """Fork a public chain and set it up as a local network.

    The fork keeps the chain id of the upstream chain.
    """
    options = options or NetworkOptions()
    launch = fork_network_anvil(
        chain_info.rpc,
        unlocked_addresses=options.unlocked_addresses,
        fork_block_number=options.fork_block_number,
        gas_limit=options.gas_limit,
        port=options.port,
    )
    if launch.chain_id != chain_info.chain_id:
        logger.warning("Forked %s reports chain id %d, expected %d", chain_info.name, launch.chain_id, chain_info.chain_id)
    try:
        return _setup_network(chain_info.name, launch, chain_info.name, options, chain_info.token_name, chain_info.token_symbol)
    except Exception:
        launch.close(log_level=logging.ERROR)
        raise


def get_network(name: str) -> Network | None:
    """Find a registered network by its chain name, case insensitive."""
    for network in networks:
        if network.name.lower() == name.lower():
            return network
    return None


def stop_all():
    """Stop the JSON-RPC listener and all networks."""
    from eth_localnet.server import stop_listening

    stop_listening()

    with _networks_lock:
        for network in networks:
            network.close()
        networks.clear()
