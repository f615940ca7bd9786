"""Local node plumbing.

- TCP port probing and allocation for Anvil nodes and the JSON-RPC proxy
- Killing node processes and collecting their output
- Console logging for the scripts
- Cross-process lock around the contract build
"""

import logging
import os
import random
import socket
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import coloredlogs
import psutil
from filelock import FileLock

logger = logging.getLogger(__name__)

#: Loggers that flood the console on every JSON-RPC call
NOISY_LOGGERS = (
    "web3.providers.HTTPProvider",
    "web3.RequestManager",
    "urllib3.connectionpool",
    "werkzeug",
)


def is_localhost_port_listening(port: int, host="localhost") -> bool:
    """Does something accept TCP connections at ``host:port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        return probe.connect_ex((host, port)) == 0


def find_free_port(min_port: int = 20_000, max_port: int = 40_000, max_attempt: int = 20) -> int:
    """Pick a random localhost port nobody listens at.

    The port may be taken by someone else before we bind it,
    callers that launch a node retry on failure.

    :raise RuntimeError:
        All ``max_attempt`` random picks were taken
    """
    assert type(min_port) == int and type(max_port) == int, f"Got {min_port}, {max_port}"
    assert min_port < max_port, f"Empty port range {min_port} - {max_port}"

    for _ in range(max_attempt):
        candidate = random.randrange(min_port, max_port)
        if not is_localhost_port_listening(candidate, "127.0.0.1"):
            logger.debug("Picked free port %d", candidate)
            return candidate

    raise RuntimeError(f"Could not find a free port in range {min_port} - {max_port}, {max_attempt} attempts")


def _drain(stream, name: str, log_level: Optional[int]) -> bytes:
    if stream is None or stream.closed:
        return b""
    output = stream.read()
    stream.close()
    if log_level is not None:
        for line in output.decode("utf-8", errors="replace").splitlines():
            logger.log(log_level, "%s: %s", name, line)
    return output


def shutdown_hard(
    process: psutil.Popen,
    log_level: Optional[int] = None,
    block=True,
    block_timeout=30,
    check_port: Optional[int] = None,
) -> tuple[bytes, bytes]:
    """SIGKILL a node process and collect what it printed.

    :param log_level:
        Also write the process output to logging at this level

    :param block:
        Wait until ``check_port`` is no longer listening

    :param block_timeout:
        Seconds to wait for the port to close

    :param check_port:
        Port the process was serving, needed with ``block``

    :return:
        stdout, stderr
    """
    if process.poll() is None:
        process.kill()

    stdout = _drain(process.stdout, "stdout", log_level)
    stderr = _drain(process.stderr, "stderr", log_level)
    process.wait()

    if not block:
        return stdout, stderr

    assert check_port is not None, "Give check_port to block the execution"
    deadline = time.time() + block_timeout
    while is_localhost_port_listening(check_port):
        if time.time() > deadline:
            raise AssertionError(f"Port {check_port} still listening {block_timeout} seconds after killing pid {process.pid}")
        time.sleep(0.1)

    return stdout, stderr


def setup_console_logging(
    default_log_level="warning",
    simplified_logging=False,
) -> logging.Logger:
    """Coloured log output for the scripts.

    ``LOG_LEVEL`` environment variable overrides ``default_log_level``.
    Per request logging of web3, urllib3 and the proxy server is muted.

    :return:
        Root logger
    """
    level_name = os.environ.get("LOG_LEVEL", default_log_level).upper()
    level = getattr(logging, level_name, None)
    assert isinstance(level, int), f"Unknown log level: {level_name}"

    if simplified_logging:
        coloredlogs.install(level=level, fmt="%(message)s", datefmt="%H:%M:%S")
    else:
        coloredlogs.install(level=level, fmt="%(asctime)s %(name)-24s [%(threadName)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger()


@contextmanager
def wait_other_writers(path: Path | str, timeout: int = 120):
    """Hold ``{path}.lock`` while writing ``path``.

    Parallel test workers compile the same Foundry project,
    only one of them may run ``forge build`` at a time.

    :param path:
        Absolute path of the file or folder being written

    :raise filelock.Timeout:
        Another writer held the lock longer than ``timeout`` seconds
    """
    path = Path(path)
    assert path.is_absolute(), f"Lock path must be absolute: {path}"

    path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(path.with_name(path.name + ".lock"), timeout=timeout)

    if lock.is_locked:
        logger.info("%s is being written by another process, waiting up to %d seconds", path, timeout)

    with lock:
        yield
