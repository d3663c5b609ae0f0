"""Loopback HTTP listener that falls back through a list of candidate ports."""

import errno
import logging
import socket
import sys
import threading
from collections.abc import Callable, Sequence
from enum import Enum
from http.server import BaseHTTPRequestHandler, HTTPServer

from oauth_capture.exceptions import (
    BindExhaustedError,
    ConfigurationError,
    ListenerError,
)

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
IPV6_LOOPBACK_HOST = "::1"

_ADDRESS_IN_USE = {errno.EADDRINUSE}
if sys.platform == "win32":
    # An exclusive bind held by another process reports WSAEACCES
    _ADDRESS_IN_USE |= {errno.WSAEADDRINUSE, errno.WSAEACCES}


class ListenerState(Enum):
    """Lifecycle of a PortFallbackListener."""

    UNBOUND = "unbound"
    BOUND = "bound"
    CLOSED = "closed"


class LoopbackHTTPServer(HTTPServer):
    """HTTPServer created unbound, restricted to loopback, never sharing its port."""

    allow_reuse_address = False
    allow_reuse_port = False

    def __init__(self, handler_class: type[BaseHTTPRequestHandler], session=None):
        super().__init__((LOOPBACK_HOST, 0), handler_class, bind_and_activate=False)
        self.session = session

    def server_bind(self):
        # Windows otherwise lets another process bind the same port.
        if hasattr(socket, "SO_EXCLUSIVEADDRUSE"):
            self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_EXCLUSIVEADDRUSE, 1)
        super().server_bind()


def _is_address_in_use(error: OSError) -> bool:
    return error.errno in _ADDRESS_IN_USE


def ipv6_loopback_in_use(port: int) -> bool:
    """Whether another socket already owns ``[::1]:port``.

    Redirect URIs name ``localhost``, which a browser may resolve to ::1 first.
    The listener only binds IPv4, so a port whose IPv6 loopback side belongs to
    another process would hand the callback to that process.
    """
    if not socket.has_ipv6:
        return False
    try:
        sock = socket.socket(socket.AF_INET6, socket.SOCK_STREAM)
    except OSError:
        return False
    with sock:
        if hasattr(socket, "SO_EXCLUSIVEADDRUSE"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_EXCLUSIVEADDRUSE, 1)
        try:
            sock.bind((IPV6_LOOPBACK_HOST, port))
        except OSError as e:
            # No ::1 configured means nothing can answer there either
            return _is_address_in_use(e)
    return False


def listen_on_first_port(
    server: HTTPServer,
    ports: Sequence[int],
    should_stop: Callable[[], bool] = lambda: False,
) -> int | None:
    """Bind the server to the first free port in ``ports``.

    Args:
        server: Server created with ``bind_and_activate=False``
        ports: Candidate ports in priority order
        should_stop: Checked before every attempt; True abandons the search

    Returns:
        Index of the port that was bound, or None if stopped mid-search.

    Raises:
        ConfigurationError: ``ports`` is empty
        BindExhaustedError: Every candidate is already in use
        ListenerError: Any other bind failure (not retried)
    """
    if not ports:
        server.server_close()
        raise ConfigurationError("No candidate ports configured")

    host = server.server_address[0]
    for index, port in enumerate(ports):
        if should_stop():
            logger.debug("Port search stopped before trying port %d", port)
            return None
        if ipv6_loopback_in_use(port):
            logger.info("Port %d already in use on %s", port, IPV6_LOOPBACK_HOST)
            continue
        server.server_address = (host, port)
        try:
            server.server_bind()
            server.server_activate()
        except OSError as e:
            if _is_address_in_use(e):
                logger.info("Port %d already in use", port)
                continue
            server.server_close()
            raise ListenerError(f"Failed to listen on port {port}: {e}", port=port) from e
        logger.info("Listening on port %d", port)
        return index

    server.server_close()
    raise BindExhaustedError(
        f"All candidate ports are in use: {list(ports)}", ports=list(ports)
    )


class PortFallbackListener:
    """Short-lived loopback listener with an explicit unbound/bound/closed lifecycle.

    The server is polled from a daemon thread; ``close()`` may be called from any
    thread, including from inside a request handler, and the socket is released
    once the polling loop notices. ``on_closed`` runs exactly once, right after
    the socket has been released, on whichever thread released it.

    Example:
        listener = PortFallbackListener(MyHandler, session=session)
        index = listener.listen([55189, 60434])
        listener.serve_in_background()
        ...
        listener.close()
    """

    def __init__(
        self,
        handler_class: type[BaseHTTPRequestHandler],
        session=None,
        poll_interval: float = 0.2,
        on_closed: Callable[[], None] | None = None,
    ):
        self._server = LoopbackHTTPServer(handler_class, session=session)
        self._poll_interval = poll_interval
        self._on_closed = on_closed
        self._lock = threading.Lock()
        self._state = ListenerState.UNBOUND
        self._binding = False
        self._released = threading.Event()
        self._thread: threading.Thread | None = None
        self.port: int | None = None

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def server(self) -> HTTPServer:
        return self._server

    def listen(self, ports: Sequence[int]) -> int | None:
        """Bind to the first free candidate.

        Returns:
            Index into ``ports``, or None when the listener was closed first.
        """
        with self._lock:
            if self._state is not ListenerState.UNBOUND:
                return None
            self._binding = True

        try:
            index = listen_on_first_port(
                self._server,
                ports,
                should_stop=lambda: self._state is ListenerState.CLOSED,
            )
        except (ListenerError, ConfigurationError):
            with self._lock:
                self._binding = False
                self._state = ListenerState.CLOSED
            self._release()
            raise

        with self._lock:
            self._binding = False
            abandoned = index is None or self._state is ListenerState.CLOSED
            if not abandoned:
                self._state = ListenerState.BOUND
                self.port = self._server.server_address[1]
        if abandoned:
            self._release()
            return None
        return index

    def serve_in_background(self) -> None:
        """Start handling requests on a daemon thread."""
        with self._lock:
            if self._state is not ListenerState.BOUND:
                return
            self._server.timeout = self._poll_interval
            self._thread = threading.Thread(
                target=self._serve,
                name=f"oauth-listener-{self.port}",
                daemon=True,
            )
            self._thread.start()

    def _serve(self) -> None:
        try:
            while self._state is ListenerState.BOUND:
                self._server.handle_request()
        finally:
            self._release()

    def close(self) -> None:
        """Stop accepting requests. Idempotent and thread-safe."""
        with self._lock:
            previous = self._state
            self._state = ListenerState.CLOSED
            serving = self._thread is not None
            binding = self._binding
        if previous is ListenerState.CLOSED:
            return
        # The polling thread or an in-progress listen() releases the socket itself.
        if not serving and not binding:
            self._release()

    def _release(self) -> None:
        with self._lock:
            if self._released.is_set():
                return
            self._server.server_close()
            self._released.set()
        logger.info("OAuth listener on port %s closed", self.port)
        if self._on_closed is not None:
            self._on_closed()

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Block until the socket has been released.

        Returns:
            True if the listener is fully closed.
        """
        if self._thread is threading.current_thread():
            return self._state is ListenerState.CLOSED
        return self._released.wait(timeout)
