"""Shared test fixtures."""

import asyncio
import socket
from urllib.parse import parse_qs, urlparse

import pytest

from oauth_capture.config import CaptureConfig, ClientRegistration


def _reserve_ports(count: int) -> list[int]:
    sockets = []
    try:
        for _ in range(count):
            s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            s.bind(("127.0.0.1", 0))
            sockets.append(s)
        return [s.getsockname()[1] for s in sockets]
    finally:
        for s in sockets:
            s.close()


@pytest.fixture
def free_ports():
    """Return n distinct ports that were free a moment ago."""
    return _reserve_ports


@pytest.fixture
def occupy_port():
    """Hold ports open with a listening socket for the duration of a test."""
    held = []

    def occupy(port: int | None = None) -> int:
        s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        s.bind(("127.0.0.1", port or 0))
        s.listen(1)
        held.append(s)
        return s.getsockname()[1]

    yield occupy

    for s in held:
        s.close()


@pytest.fixture
def make_config():
    """Config with one test registration per port and fast polling."""

    def factory(ports: list[int], **kwargs) -> CaptureConfig:
        kwargs.setdefault("timeout", None)
        kwargs.setdefault("poll_interval", 0.05)
        registrations = tuple(
            ClientRegistration(f"client-{port}", port) for port in ports
        )
        return CaptureConfig(registrations=registrations, **kwargs)

    return factory


@pytest.fixture
def opened_urls() -> list[str]:
    """List used as a recording opener (``opener=opened_urls.append``)."""
    return []


def _callback_target(authorization_url: str) -> tuple[str, str]:
    query = parse_qs(urlparse(authorization_url).query)
    target = query["state"][0]
    secret = parse_qs(urlparse(target).query)["secret"][0]
    return target.replace("://localhost:", "://127.0.0.1:", 1), secret


async def _wait_until_bound(session, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while session.authorization_url is None and not session.result.done():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("session never bound a port")
        await asyncio.sleep(0.01)


@pytest.fixture
def callback_target():
    """Simulate the bridging page: read the POST target out of ``state``.

    Returns (target URL on 127.0.0.1, session secret).
    """
    return _callback_target


@pytest.fixture
def wait_until_bound():
    """Let the session's start task run until it opened a URL or settled."""
    return _wait_until_bound
