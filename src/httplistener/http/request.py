"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses the head of a TCP byte stream into a structured Request object,
never inspecting more than a fixed scan limit for the request line and
header block.

=============================================================================
WHAT WE ACCEPT
=============================================================================

    POST /submit?lang=en HTTP/1.1\r\n        ← request line
    Host: localhost\r\n                      ← header lines (kept raw)
    Content-Length: 5\r\n
    \r\n                                     ← end of headers
    hello                                    ← body (POST only)

    ┌────────────┬───────────┬────────────────────────────────────────┐
    │  Method    │  Has Body │  Notes                                 │
    ├────────────┼───────────┼────────────────────────────────────────┤
    │  GET       │    No     │  Content-Length is ignored entirely    │
    │  POST      │    Yes    │  Exactly Content-Length bytes are read │
    └────────────┴───────────┴────────────────────────────────────────┘

Anything else on the request line is a malformed request.

=============================================================================
PARSING ALGORITHM
=============================================================================

    ┌───────────────────────────────────────────────────────────────────┐
    │  1. Fill lookahead window (≤ scan_limit bytes)                    │
    │  2. Find \r\n in window            missing? → MalformedRequestLine│
    │  3. Split request line on " "      ≠ 3 parts? → MalformedRequestLine│
    │  4. Check method, target           bad?      → MalformedRequestLine│
    │  5. Find \r\n\r\n after line end   missing?  → MalformedHeaders   │
    │  6. Rewind, skip request line, read header block, split on \r\n   │
    │  7. POST: skip \r\n\r\n, read Content-Length bytes                │
    │           bad value? → InvalidContentLength                       │
    │           stream ended early? → TruncatedStream                   │
    └───────────────────────────────────────────────────────────────────┘

Every failure is terminal: the connection gets a 400 and is closed.

=============================================================================
CONTENT-LENGTH MATCHING
=============================================================================

The first header line that STARTS WITH "Content-Length" wins. This is a
loose prefix match, so "Content-Length-X: 3" would also be picked up if it
came first. If no line matches with that exact spelling, we fall back to a
case-insensitive prefix match ("content-length: 5" from curl-like clients).

=============================================================================
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import BinaryIO, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl
import io
import logging

from .stream import HEADER_TERMINATOR, LookaheadReader


logger = logging.getLogger(__name__)


GET = "GET"
POST = "POST"

# The body-less verb first, then the body-bearing one
ALLOWED_METHODS = (GET, POST)

DEFAULT_SCAN_LIMIT = 4096

REQUEST_LINE_TERMINATOR = b"\r\n"


# =============================================================================
# PARSE FAILURES
# =============================================================================

class HTTPParseError(Exception):
    """
    Raised when the request head cannot be turned into a Request.

    Carries the HTTP status code that should be returned to the client.
    All parse failures in this server answer 400 Bad Request.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class MalformedRequestLine(HTTPParseError):
    """No CRLF in the window, wrong token count, unknown verb or bad target."""


class MalformedHeaders(HTTPParseError):
    """No CRLF CRLF after the request line within the scan limit."""


class InvalidContentLength(HTTPParseError):
    """Content-Length is not a non-negative integer (or is over the body cap)."""


class TruncatedStream(HTTPParseError):
    """The stream ended (or failed) before the announced bytes arrived."""


# =============================================================================
# REQUEST VALUE
# =============================================================================

@dataclass(frozen=True)
class Request:
    """
    A parsed HTTP request.

    Built once per connection and never modified afterwards.

    Attributes:
        method:         "GET" or "POST".
        path:           Routing path, query string stripped ("/search").
        headers:        Raw header lines in arrival order, duplicates kept,
                        case as sent ("Host: localhost").
        body:           Body bytes for POST with a Content-Length header,
                        otherwise None. Always None for GET.
        version:        Protocol token from the request line ("HTTP/1.1").
        query_string:   Raw text after the first "?" ("" if none).
        query_params:   Decoded query, read-only, every value of a repeated
                        key kept in order
                        {"q": ("hello world", "again")}.
        client_address: (ip, port) of the peer, for logging.
    """

    method: str
    path: str
    headers: Tuple[str, ...] = ()
    body: Optional[bytes] = None
    version: str = "HTTP/1.1"
    query_string: str = ""
    query_params: Mapping[str, Tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({}), compare=False
    )
    client_address: Tuple[str, int] = ("", 0)

    @property
    def target(self) -> str:
        """The path with its query string, as it appeared on the wire."""
        if self.query_string:
            return f"{self.path}?{self.query_string}"
        return self.path

    @property
    def content_length(self) -> Optional[int]:
        """Content-Length as an integer, or None if missing or invalid."""
        value = self.get_header("Content-Length")
        if value is None or not (value.isascii() and value.isdigit()):
            return None
        return int(value)

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """
        Get the value of the first header called `name` (any case).

        Header lines are stored raw, so this splits on the first colon
        each time. Fine for a handful of headers.
        """
        wanted = name.lower()
        for line in self.headers:
            header_name, sep, value = line.partition(":")
            if sep and header_name.strip().lower() == wanted:
                return value.strip()
        return default

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """
        Get the first value of a query parameter.

        Example:
            # /search?q=a&q=b
            request.get_query("q")  # "a"
        """
        values = self.query_params.get(name, ())
        return values[0] if values else default

    def get_query_list(self, name: str) -> List[str]:
        """Get all values of a query parameter, in order of appearance."""
        return list(self.query_params.get(name, ()))


def parse_query(query_string: str) -> Mapping[str, Tuple[str, ...]]:
    """
    Decode an application/x-www-form-urlencoded query string.

    Pairs are "&"-separated, key and value "="-separated, both
    percent-decoded ("+" is a space). Repeated keys keep every value.
    A pair without "=" gets an empty value. The result is read-only.

        >>> dict(parse_query("q=hello%20world&q=again&debug"))
        {'q': ('hello world', 'again'), 'debug': ('',)}
    """
    params: Dict[str, List[str]] = {}
    for key, value in parse_qsl(query_string, keep_blank_values=True):
        params.setdefault(key, []).append(value)
    return MappingProxyType({key: tuple(values) for key, values in params.items()})


# =============================================================================
# PARSER
# =============================================================================

class RequestParser:
    """
    Converts the head of a byte stream into a Request.

    The parser owns no per-connection state; one instance is shared by
    every worker thread.

    Usage:
        parser = RequestParser(scan_limit=4096)
        request = parser.parse(sock.makefile("rb"))
    """

    def __init__(
        self,
        scan_limit: int = DEFAULT_SCAN_LIMIT,
        max_body_size: int = 10 * 1024 * 1024,
    ):
        """
        Args:
            scan_limit: Maximum bytes inspected for request line + headers.
            max_body_size: Largest Content-Length we agree to read.
        """
        if scan_limit < len(REQUEST_LINE_TERMINATOR) + len(HEADER_TERMINATOR):
            raise ValueError(f"scan_limit too small: {scan_limit}")
        self.scan_limit = scan_limit
        self.max_body_size = max_body_size

    def parse(
        self,
        stream: Union[BinaryIO, LookaheadReader],
        client_address: Tuple[str, int] = ("", 0),
    ) -> Request:
        """
        Parse one request from `stream`.

        Args:
            stream: Binary stream positioned at the start of a connection,
                    or a LookaheadReader that has not been filled yet.
            client_address: Peer (ip, port), copied into the Request.

        Returns:
            The parsed Request.

        Raises:
            MalformedRequestLine, MalformedHeaders,
            InvalidContentLength, TruncatedStream
        """
        if isinstance(stream, LookaheadReader):
            reader = stream
        else:
            reader = LookaheadReader(stream)

        # =====================================================================
        # STEP 1: Fill the lookahead window
        # =====================================================================
        try:
            window = reader.fill(self.scan_limit)
        except OSError as e:
            # Timeouts and resets land here (socket.timeout is an OSError)
            raise TruncatedStream(f"Failed reading request head: {e}")

        # =====================================================================
        # STEP 2: Request line
        # =====================================================================
        request_line_end = window.find(REQUEST_LINE_TERMINATOR)
        if request_line_end == -1:
            raise MalformedRequestLine(
                f"No request line terminator in first {len(window)} bytes"
            )

        request_line = window[:request_line_end].decode("utf-8", errors="replace")
        method, path, query_string, version = self._parse_request_line(request_line)

        # =====================================================================
        # STEP 3: Header block boundaries, in the same window
        # =====================================================================
        headers_start = request_line_end + len(REQUEST_LINE_TERMINATOR)
        headers_end = window.find(HEADER_TERMINATOR, headers_start)
        if headers_end == -1:
            raise MalformedHeaders(
                f"No header terminator within {self.scan_limit} bytes"
            )

        # =====================================================================
        # STEP 4: Rewind and consume exactly the header block
        # =====================================================================
        reader.reset()
        reader.skip(headers_start)
        headers = self._read_headers(reader, headers_end - headers_start)

        # =====================================================================
        # STEP 5: Body (POST only)
        # =====================================================================
        body = None
        if method == POST:
            body = self._read_body(reader, headers)

        logger.debug(f"Parsed {method} {path} with {len(headers)} header lines")

        return Request(
            method=method,
            path=path,
            headers=headers,
            body=body,
            version=version,
            query_string=query_string,
            query_params=parse_query(query_string),
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> Tuple[str, str, str, str]:
        """
        Split "METHOD SP TARGET SP VERSION" and validate it.

        Returns:
            (method, path, query_string, version)
        """
        parts = line.split(" ")
        if len(parts) != 3:
            raise MalformedRequestLine(f"Invalid request line: {line!r}")

        method, target, version = parts

        if method not in ALLOWED_METHODS:
            raise MalformedRequestLine(f"Unsupported method: {method!r}")

        if not target.startswith("/"):
            raise MalformedRequestLine(f"Invalid request target: {target!r}")

        # Only the first "?" splits; later ones belong to the query
        path, _, query_string = target.partition("?")

        return method, path, query_string, version

    def _read_headers(self, reader: LookaheadReader, size: int) -> Tuple[str, ...]:
        """Read `size` bytes of header block and split into raw lines."""
        try:
            data = reader.read_exact(size)
        except OSError as e:
            raise TruncatedStream(f"Failed reading headers: {e}")

        if len(data) < size:
            raise TruncatedStream(f"Expected {size} header bytes, got {len(data)}")

        if not data:
            return ()
        return tuple(data.decode("utf-8", errors="replace").split("\r\n"))

    def _read_body(self, reader: LookaheadReader, headers: Tuple[str, ...]) -> Optional[bytes]:
        """
        Read exactly Content-Length bytes after the header terminator.

        Returns None when there is no Content-Length header; nothing past
        the header block is consumed in that case.
        """
        try:
            if reader.skip(len(HEADER_TERMINATOR)) < len(HEADER_TERMINATOR):
                raise TruncatedStream("Stream ended inside header terminator")

            length = self._content_length(headers)
            if length is None:
                return None

            body = reader.read_exact(length)
        except OSError as e:
            raise TruncatedStream(f"Failed reading body: {e}")

        if len(body) < length:
            raise TruncatedStream(f"Expected {length} body bytes, got {len(body)}")

        return body

    def _content_length(self, headers: Tuple[str, ...]) -> Optional[int]:
        line = find_content_length_header(headers)
        if line is None:
            return None

        value = _header_value(line)
        # isdigit() alone would accept "²" and friends
        if not (value.isascii() and value.isdigit()):
            raise InvalidContentLength(f"Invalid Content-Length: {value!r}")

        length = int(value)
        if length > self.max_body_size:
            raise InvalidContentLength(
                f"Content-Length {length} exceeds limit of {self.max_body_size}"
            )
        return length


def find_content_length_header(headers: Tuple[str, ...]) -> Optional[str]:
    """
    Return the first header line that looks like Content-Length.

    Exact-case prefix match first, then a case-insensitive one.
    """
    for line in headers:
        if line.startswith("Content-Length"):
            return line
    for line in headers:
        if line.lower().startswith("content-length"):
            return line
    return None


def _header_value(line: str) -> str:
    # "Name: value" normally; fall back to the first space for "Name value"
    _, sep, value = line.partition(":")
    if not sep:
        _, _, value = line.partition(" ")
    return value.strip()


# =============================================================================
# CONVENIENCE FUNCTION
# =============================================================================

def parse_request(
    data: bytes,
    scan_limit: int = DEFAULT_SCAN_LIMIT,
    client_address: Tuple[str, int] = ("", 0),
) -> Request:
    """
    Parse a request held entirely in memory.

    Handy for tests and tooling; the server parses straight off the socket.
    """
    parser = RequestParser(scan_limit=scan_limit)
    return parser.parse(io.BytesIO(data), client_address)
