"""
=============================================================================
TCP LISTENER
=============================================================================

Owns the listening socket and runs the accept loop. Each accepted client
socket is wrapped in a Connection and handed to a callback (the HTTP
server, which queues it on the worker pool). The accept loop itself never
reads or writes request data, so a slow client can't stall it.

=============================================================================
SOCKET LIFECYCLE
=============================================================================

    socket()  →  setsockopt()  →  bind()  →  listen()  →  accept() loop
                                                              │
                                            Connection(sock)  │
                                            callback(conn) ◄──┘

=============================================================================
INTERRUPTIBLE ACCEPT
=============================================================================

accept() blocks. To be able to stop, the listening socket has a 1 second
timeout; every time it expires we re-check the stop flag:

    while not stop_requested:
        try:
            accept()          # at most 1s
        except timeout:
            continue          # check flag, loop

=============================================================================
"""

import socket
import signal
import threading
import logging
from typing import Callable, Optional, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    TCP accept loop.

    Usage:
        def handle_connection(conn: Connection):
            ...

        server = SocketServer(config)
        server.start(handle_connection)  # Blocks until shutdown()
    """

    ACCEPT_POLL_INTERVAL = 1.0

    def __init__(self, config: ServerConfig):
        """
        Args:
            config: Host, port, backlog and per-connection timeout.

        The socket is created lazily in start().
        """
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._bound_address: Optional[Tuple[str, int]] = None

        # Set once the socket is listening; cleared again after cleanup
        self._ready_event = threading.Event()
        # Set by shutdown(), never cleared: a stop requested before the
        # accept loop starts still stops it
        self._stop_requested = threading.Event()

        self._previous_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """
        The address we listen on.

        After bind this is the real address, so port 0 shows the port
        the OS picked.
        """
        if self._bound_address:
            return self._bound_address
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Restarting right after a stop shouldn't fail with
        # "Address already in use" while old sockets sit in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Responses are tiny; send them immediately
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        sock.settimeout(self.ACCEPT_POLL_INTERVAL)
        return sock

    def _setup_signals(self):
        """
        Shut down gracefully on SIGTERM / SIGINT.

        signal.signal() only works from the main thread. When the server
        runs in a background thread (tests, embedding) we skip this and
        rely on shutdown() being called.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in main thread, signal handlers not installed")
            return

        def on_signal(signum, frame):
            logger.info(f"Caught {signal.Signals(signum).name}, stopping listener")
            self.shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._previous_handlers[sig] = signal.signal(sig, on_signal)

    def _restore_signals(self):
        while self._previous_handlers:
            sig, previous = self._previous_handlers.popitem()
            signal.signal(sig, previous)

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and accept until shutdown() is called.

        Args:
            connection_handler: Called on the accept thread with every new
                                Connection. Must return quickly.

        Raises:
            OSError: If the address can't be bound.
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._socket.listen(self.config.backlog)
        self._bound_address = self._socket.getsockname()[:2]

        self._running = True
        self._setup_signals()

        logger.info(f"Listening on {self.address[0]}:{self.address[1]}")
        self._ready_event.set()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while not self._stop_requested.is_set():
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue  # Poll the stop flag
            except OSError as e:
                if not self._stop_requested.is_set():
                    logger.error(f"Accept error: {e}")
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            try:
                conn = Connection(
                    socket=client_socket,
                    address=client_address,
                    timeout=self.config.timeout,
                )
                connection_handler(conn)
            except Exception as e:
                # Nothing that goes wrong with one client may stop the loop
                logger.exception(f"Failed to dispatch connection from {client_address[0]}: {e}")
                try:
                    client_socket.close()
                except OSError:
                    pass

    def shutdown(self):
        """
        Stop accepting. Safe to call more than once, from any thread,
        and before start(): the listener is one-shot.
        """
        if not self._stop_requested.is_set():
            logger.info("Shutting down listener...")
        self._stop_requested.set()
        self._running = False

    def _cleanup(self):
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        self._running = False
        self._ready_event.clear()
        logger.info("Listener stopped")

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening. Returns False on timeout."""
        return self._ready_event.wait(timeout)
