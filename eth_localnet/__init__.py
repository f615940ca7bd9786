"""Local EVM test networks with cross-chain message relaying.

- :py:mod:`eth_localnet.export` to launch or fork networks and export their details
- :py:mod:`eth_localnet.relay` to deliver cross-chain contract calls
- :py:mod:`eth_localnet.helpers` for signing, test accounts and other small helpers
"""
