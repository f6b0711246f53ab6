"""Ports and child processes of the local fork node.

The fork node is a child process bound to a localhost port. Tests start
several in a row, so a node must be gone and its port free before the
next one starts on the same port.
"""

import logging
import random
import socket
import time
from dataclasses import dataclass
from typing import IO, Optional

import psutil


logger = logging.getLogger(__name__)


#: Fork nodes bind to IPv4 localhost
LOCALHOST = "127.0.0.1"


class PortStillOccupied(TimeoutError):
    """A killed process did not release its port in time."""

    def __init__(self, port: int, timeout: float):
        super().__init__(f"Port {port} still occupied {timeout} seconds after the process was killed")
        self.port = port


@dataclass(frozen=True, slots=True)
class PortRange:
    """Where to look for a free port for a new fork node."""

    min_port: int = 19_999

    #: Exclusive
    max_port: int = 29_999

    #: Random ports to try before giving up
    attempts: int = 25

    def __post_init__(self):
        assert 0 < self.min_port < self.max_port <= 65_535, f"Bad port range {self.min_port} - {self.max_port}"
        assert self.attempts > 0


@dataclass(frozen=True, slots=True)
class ProcessOutput:
    """What a killed child process printed."""

    stdout: bytes = b""

    stderr: bytes = b""

    @property
    def empty(self) -> bool:
        return not self.stdout and not self.stderr


def is_localhost_port_listening(port: int, host: str = LOCALHOST) -> bool:
    """Is some process accepting TCP connections on a local port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex((host, port)) == 0


def find_free_port(port_range: PortRange = PortRange()) -> int:
    """Pick a random port nothing listens on.

    Another process may still bind the port before we do.

    :raise RuntimeError:
        Every port tried was occupied
    """
    for _ in range(port_range.attempts):
        port = random.randrange(port_range.min_port, port_range.max_port)
        if not is_localhost_port_listening(port):
            return port

    raise RuntimeError(f"No free port in {port_range.min_port} - {port_range.max_port} after {port_range.attempts} attempts")


def wait_port_released(port: int, timeout: float = 30.0, poll_interval: float = 0.1):
    """Block until nothing listens on ``port``.

    :raise PortStillOccupied:
        Port was not released within ``timeout`` seconds
    """
    deadline = time.monotonic() + timeout
    while is_localhost_port_listening(port):
        if time.monotonic() >= deadline:
            raise PortStillOccupied(port, timeout)
        time.sleep(poll_interval)


def _drain(stream: Optional[IO[bytes]], label: str, log_level: Optional[int]) -> bytes:
    if stream is None:
        return b""

    data = stream.read()
    if log_level is not None:
        for line in data.decode("utf-8", errors="replace").splitlines():
            logger.log(log_level, "%s: %s", label, line)
    return data


def shutdown_hard(
    process: psutil.Popen,
    log_level: Optional[int] = None,
    release_port: Optional[int] = None,
    release_timeout: float = 30.0,
) -> ProcessOutput:
    """SIGKILL a child process and collect its output.

    :param log_level:
        Copy the process output to our log at this level

    :param release_port:
        Also wait until the process has let go of this port

    :raise PortStillOccupied:
        ``release_port`` was given and is still bound after ``release_timeout``
    """
    if process.poll() is None:
        process.kill()
    process.wait()

    output = ProcessOutput(
        stdout=_drain(process.stdout, "stdout", log_level),
        stderr=_drain(process.stderr, "stderr", log_level),
    )

    if release_port is not None:
        wait_port_released(release_port, timeout=release_timeout)

    return output
