"""Forge smart contract development toolchain integration.

- Compile the gateway contracts shipped in ``contracts/localnet``

- See `Foundry book <https://book.getfoundry.sh/>`__ for more information.
"""

import logging
from pathlib import Path
from shutil import which
from subprocess import DEVNULL, PIPE, TimeoutExpired

import psutil

from eth_localnet.utils import wait_other_writers

logger = logging.getLogger(__name__)


#: Crash unless forge completes in 4 minutes
#:
DEFAULT_TIMEOUT = 4 * 60

#: Foundry project with LocalGateway, LocalGasReceiver, ConstAddressDeployer
CONTRACTS_ROOT = Path(__file__).resolve().parent.parent / "contracts" / "localnet"

#: Contracts every local network deploys
REQUIRED_CONTRACTS = ("LocalGateway", "LocalGasReceiver", "ConstAddressDeployer")


class ForgeFailed(Exception):
    """Forge command failed."""


def _exec_cmd(
    cmd_line: list[str],
    timeout=DEFAULT_TIMEOUT,
    cwd: Path | None = None,
) -> str:
    """Execute the command line.

    :param timeout:
        Timeout in seconds

    :param cwd:
        Working directory for the forge process.

    :return:
        Combined stdout and stderr
    """

    for x in cmd_line:
        assert type(x) == str, f"Got non-string in command line: {x} in {cmd_line}"

    proc = psutil.Popen(cmd_line, stdin=DEVNULL, stdout=PIPE, stderr=PIPE, cwd=cwd)
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except TimeoutExpired as e:
        proc.kill()
        raise ForgeFailed(f"forge did not complete in {timeout} seconds: {' '.join(cmd_line)}") from e

    output = stdout.decode("utf-8") + stderr.decode("utf-8")

    if proc.returncode != 0:
        raise ForgeFailed(f"forge return code {proc.returncode} when running: {' '.join(cmd_line)}\nOutput is:\n{output}")

    logger.debug("forge result:\n%s", output)
    return output


def compile_project(project_folder: Path, timeout=DEFAULT_TIMEOUT) -> Path:
    """Run ``forge build`` in a Foundry project.

    :return:
        The ``out`` folder with the compiled artifacts
    """
    assert project_folder.is_dir(), f"Not a Foundry project: {project_folder}"
    assert (project_folder / "foundry.toml").exists(), f"foundry.toml missing in {project_folder}"

    forge = which("forge")
    if forge is None:
        raise ForgeFailed("forge not found in PATH, install Foundry: https://book.getfoundry.sh/getting-started/installation")

    logger.info("Compiling %s", project_folder)
    _exec_cmd([forge, "build"], timeout=timeout, cwd=project_folder)
    return project_folder / "out"


def compile_bundled_contracts(project_folder: Path = CONTRACTS_ROOT, force=False) -> Path:
    """Compile the bundled contracts once.

    Skips compilation if the artifacts already exist, unless ``force`` is set.
    Parallel test workers wait for each other with a file lock.

    :return:
        The ``out`` folder with the compiled artifacts
    """
    out = project_folder / "out"

    def _compiled() -> bool:
        return all((out / f"{name}.sol" / f"{name}.json").exists() for name in REQUIRED_CONTRACTS)

    with wait_other_writers(project_folder.resolve() / "build"):
        if force or not _compiled():
            compile_project(project_folder)
        else:
            logger.debug("Using cached artifacts in %s", out)

    return out
