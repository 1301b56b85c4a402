"""
=============================================================================
HTTP RESPONSE WRITER
=============================================================================

This server answers every connection with exactly one of three fixed
responses. None of them carries a body, and all of them close the
connection.

    ┌──────────┬────────────────────────────────────────────────────────┐
    │  Status  │  When                                                  │
    ├──────────┼────────────────────────────────────────────────────────┤
    │  200     │  A handler was found and invoked (even if it failed)   │
    │  400     │  The request line, headers or body could not be parsed │
    │  404     │  No handler registered for (method, path)              │
    └──────────┴────────────────────────────────────────────────────────┘

=============================================================================
WIRE FORMAT
=============================================================================

    HTTP/1.1 404 Not Found\r\n      ← Status line
    Content-Length: 0\r\n           ← No body follows
    Connection: close\r\n           ← We close right after sending
    \r\n                            ← End of headers

=============================================================================
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO
import logging


logger = logging.getLogger(__name__)


class HTTPStatus(IntEnum):
    """
    The status codes this server can send.

    IntEnum, so HTTPStatus.OK == 200 holds.
    """

    OK = 200                # Handler invoked
    BAD_REQUEST = 400       # Parse failure
    NOT_FOUND = 404         # No route

    @property
    def phrase(self) -> str:
        """Reason phrase for the status line ("Not Found")."""
        return _STATUS_PHRASES[self]


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.NOT_FOUND: "Not Found",
}


@dataclass(frozen=True)
class HTTPResponse:
    """
    One of the fixed, body-less responses.

    Frozen: the three instances below are shared by every thread.
    """

    status: HTTPStatus
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """E.g. "HTTP/1.1 200 OK"."""
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    def to_bytes(self) -> bytes:
        """Serialize for socket.sendall() / sink.write()."""
        lines = [
            self.status_line,
            "Content-Length: 0",
            "Connection: close",
            "",  # Blank line ends the header block
            "",
        ]
        return "\r\n".join(lines).encode("ascii")


OK = HTTPResponse(HTTPStatus.OK)
BAD_REQUEST = HTTPResponse(HTTPStatus.BAD_REQUEST)
NOT_FOUND = HTTPResponse(HTTPStatus.NOT_FOUND)

_RESPONSES = {
    HTTPStatus.OK: OK,
    HTTPStatus.BAD_REQUEST: BAD_REQUEST,
    HTTPStatus.NOT_FOUND: NOT_FOUND,
}


def response_for(status: int) -> HTTPResponse:
    """
    Look up the fixed response for a status code.

    Raises:
        ValueError: For any status other than 200, 400 or 404.
    """
    return _RESPONSES[HTTPStatus(status)]


def write_response(sink: BinaryIO, status: int) -> int:
    """
    Write a fixed response to `sink` and flush it.

    The flush matters: the caller closes the socket right after, and
    bytes still sitting in a BufferedWriter would be lost.

    Returns:
        Number of bytes written.
    """
    data = response_for(status).to_bytes()
    sink.write(data)
    sink.flush()
    logger.debug(f"Sent {int(status)} ({len(data)} bytes)")
    return len(data)
