"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket: a lookahead reader on the way in, a
buffered output sink on the way out, and a record of where the connection
is in its (one-pass) lifecycle.

=============================================================================
ONE REQUEST, ONE RESPONSE, CLOSE
=============================================================================

This server never keeps a socket open across requests. Every connection
walks forward through the state machine below and ends in CLOSED after
exactly one response.

    ACCEPTED ──► PARSING ──┬──► PARSE_FAILED ──► BAD_REQUEST_SENT ──┐
                           │                                        │
                           └──► PARSED ──► ROUTING ──┬──► NOT_FOUND ──► NOT_FOUND_SENT ──┤
                                                     │                                   │
                                                     └──► FOUND ──► HANDLER_INVOKED      │
                                                                          │              │
                                                                          ▼              │
                                                                       OK_SENT ──────────┤
                                                                                         ▼
                                                                                      CLOSED

No state ever moves backwards. Any state may jump straight to CLOSED
(client vanished, socket error).

=============================================================================
"""

import socket
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional
import uuid

from ..http.response import HTTPStatus, write_response
from ..http.stream import LookaheadReader


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Where a connection is in its single request/response pass."""
    ACCEPTED = "accepted"                   # Socket accepted, nothing read
    PARSING = "parsing"                     # Reading request line / headers / body
    PARSE_FAILED = "parse_failed"           # Parser raised, 400 follows
    PARSED = "parsed"                       # Request value built
    ROUTING = "routing"                     # Looking up (method, path)
    NOT_FOUND = "not_found"                 # No route, 404 follows
    FOUND = "found"                         # Handler located
    HANDLER_INVOKED = "handler_invoked"     # Handler ran (maybe failed)
    BAD_REQUEST_SENT = "bad_request_sent"   # 400 written
    NOT_FOUND_SENT = "not_found_sent"       # 404 written
    OK_SENT = "ok_sent"                     # 200 written
    CLOSED = "closed"                       # Socket released


_TRANSITIONS = {
    ConnectionState.ACCEPTED: {ConnectionState.PARSING},
    ConnectionState.PARSING: {ConnectionState.PARSE_FAILED, ConnectionState.PARSED},
    ConnectionState.PARSE_FAILED: {ConnectionState.BAD_REQUEST_SENT},
    ConnectionState.PARSED: {ConnectionState.ROUTING},
    ConnectionState.ROUTING: {ConnectionState.NOT_FOUND, ConnectionState.FOUND},
    ConnectionState.NOT_FOUND: {ConnectionState.NOT_FOUND_SENT},
    ConnectionState.FOUND: {ConnectionState.HANDLER_INVOKED},
    ConnectionState.HANDLER_INVOKED: {ConnectionState.OK_SENT},
    ConnectionState.BAD_REQUEST_SENT: set(),
    ConnectionState.NOT_FOUND_SENT: set(),
    ConnectionState.OK_SENT: set(),
    ConnectionState.CLOSED: set(),
}

# The state that follows a successful write of each status
_SENT_STATES = {
    HTTPStatus.OK: ConnectionState.OK_SENT,
    HTTPStatus.BAD_REQUEST: ConnectionState.BAD_REQUEST_SENT,
    HTTPStatus.NOT_FOUND: ConnectionState.NOT_FOUND_SENT,
}


class InvalidTransition(RuntimeError):
    """A state change the lifecycle does not allow."""


@dataclass
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short identifier for log lines.
        state: Current lifecycle state.
        history: Every state visited, in order.
        created_at: When the connection was accepted.
        timeout: Socket timeout for reads and writes (None = block forever).
    """

    socket: socket.socket
    address: tuple

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.ACCEPTED
    history: List[ConnectionState] = field(default_factory=lambda: [ConnectionState.ACCEPTED])
    created_at: float = field(default_factory=time.time)
    timeout: Optional[float] = 30.0

    _reader: Optional[LookaheadReader] = field(default=None, repr=False)
    _rfile: Optional[BinaryIO] = field(default=None, repr=False)
    _wfile: Optional[BinaryIO] = field(default=None, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

        # Buffered file views of the socket. The reader side is wrapped so
        # the parser can peek at the head and rewind.
        self._rfile = self.socket.makefile("rb")
        self._wfile = self.socket.makefile("wb")
        self._reader = LookaheadReader(self._rfile)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        return str(self.address[0]) if self.address else ""

    @property
    def age(self) -> float:
        """Seconds since the connection was accepted."""
        return time.time() - self.created_at

    @property
    def reader(self) -> LookaheadReader:
        """Lookahead view of the incoming byte stream."""
        return self._reader

    @property
    def sink(self) -> BinaryIO:
        """Buffered output stream handed to handlers."""
        return self._wfile

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    def transition(self, new_state: ConnectionState) -> None:
        """
        Move to `new_state`.

        Raises:
            InvalidTransition: If the lifecycle does not allow the move.
        """
        if new_state != ConnectionState.CLOSED and new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"[{self.id}] {self.state.value} -> {new_state.value} not allowed"
            )
        self.state = new_state
        self.history.append(new_state)

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, status: HTTPStatus) -> bool:
        """
        Write one of the fixed responses and flush it.

        Returns:
            True if the bytes went out, False if the client was gone or
            the handler closed the sink.

        Raises:
            InvalidTransition: If this connection can't send `status` now
                               (including when a response already went out).
        """
        sent_state = _SENT_STATES[HTTPStatus(status)]
        if sent_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"[{self.id}] cannot send {int(status)} from {self.state.value}"
            )

        try:
            write_response(self._wfile, status)
        except (ConnectionResetError, BrokenPipeError, OSError) as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False
        except ValueError as e:
            # The handler closed the sink; the status line has nowhere to go
            logger.warning(f"[{self.id}] Send failed, output closed by handler: {e}")
            return False

        self.transition(sent_state)
        return True

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self, drain_limit: int = 64 * 1024):
        """
        Close the connection gracefully.

        1. Flush and close the file views.
        2. shutdown(SHUT_WR): send FIN so the client sees end of response.
        3. Drain what the client is still sending (bounded), so closing
           with unread data doesn't turn into a TCP reset that could
           destroy our response before the client reads it.
        4. close(): release the file descriptor.
        """
        if self.state == ConnectionState.CLOSED:
            return

        for stream in (self._wfile, self._rfile):
            try:
                stream.close()
            except OSError:
                pass  # Client already gone; nothing left to flush

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            drained = 0
            while drained < drain_limit:
                data = self.socket.recv(4096)
                if not data:
                    break
                drained += len(data)
        except OSError:
            pass  # Timeout or reset; we're closing anyway

        try:
            self.socket.close()
        except OSError:
            pass

        self.transition(ConnectionState.CLOSED)
        logger.debug(f"[{self.id}] Connection closed after {self.age:.3f}s")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
