"""Shared fixtures.

Tests that launch networks need ``anvil`` and compiled contracts.
The contracts are compiled with ``forge`` unless ``LOCALNET_ARTIFACTS_DIR``
points to an existing build.
"""

import os
import shutil
from pathlib import Path

import pytest

from eth_localnet.abi import resolve_artifacts_dir
from eth_localnet.anvil import is_anvil_installed
from eth_localnet.export import destroy_exported


@pytest.fixture(scope="session")
def artifacts_dir() -> Path:
    if not is_anvil_installed():
        pytest.skip("anvil not installed")
    if not os.environ.get("LOCALNET_ARTIFACTS_DIR") and shutil.which("forge") is None:
        pytest.skip("forge not installed and LOCALNET_ARTIFACTS_DIR not set")
    return resolve_artifacts_dir()


@pytest.fixture()
def teardown_networks():
    """Stop everything launched by the test."""
    yield
    destroy_exported()
