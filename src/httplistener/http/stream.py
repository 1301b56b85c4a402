"""
=============================================================================
BOUNDED LOOKAHEAD READER
=============================================================================

Wraps a binary stream with "mark, peek, then rewind" semantics so the
request parser can inspect the head of a connection twice before deciding
how many bytes actually belong to the request line and header block.

=============================================================================
WHY A LOOKAHEAD BUFFER?
=============================================================================

We don't know where the header block ends until we have seen it. But we
also must not read past a fixed limit, or a hostile client could make us
buffer megabytes of "headers".

    Connection bytes:

        GET /search?q=x HTTP/1.1\r\nHost: a\r\n\r\nBODY...
        ├──────────── lookahead window (at most L bytes) ──────────┤
        ▲
        mark (position 0)

    1. fill(L)    Pull bytes into the window until we see \r\n\r\n,
                  reach L bytes, or the peer stops sending (EOF).
    2. peek()     Scan the window as often as we like (request line,
                  then header terminator). Nothing is consumed.
    3. reset()    Go back to the mark.
    4. skip(n)    Step over bytes we already understood.
    5. read_exact(n)
                  Consume bytes, first from the window, then straight
                  from the underlying stream (the body may extend past
                  the window).

=============================================================================
SHORT READS
=============================================================================

TCP delivers bytes in arbitrary chunks. One recv() might return only
"GET /sea". So fill() keeps calling read1() until it has a reason to stop,
and read_exact() loops until it has n bytes or the stream ends.

=============================================================================
"""

import logging
from typing import BinaryIO, Optional


logger = logging.getLogger(__name__)


HEADER_TERMINATOR = b"\r\n\r\n"


class LookaheadReader:
    """
    Binary stream reader with a single bounded mark.

    The window is filled once per connection. Position 0 of the window is
    the mark; reset() always returns there.

    Usage:
        reader = LookaheadReader(sock.makefile("rb"))
        window = reader.fill(4096)
        end = window.find(b"\\r\\n")
        reader.reset()
        reader.skip(end + 2)
        headers = reader.read_exact(42)
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._window = bytearray()
        self._pos = 0  # Read position inside the window
        self._filled = False

    @property
    def window(self) -> bytes:
        """Bytes captured by fill(), starting at the mark."""
        return bytes(self._window)

    @property
    def position(self) -> int:
        """Bytes consumed since the mark."""
        return self._pos

    def fill(self, limit: int, stop_at: Optional[bytes] = HEADER_TERMINATOR) -> bytes:
        """
        Read up to `limit` bytes into the lookahead window.

        Stops early once `stop_at` appears in the window or the stream
        reports EOF. Never requests more than `limit` bytes in total.

        Args:
            limit: Maximum window size (the scan limit).
            stop_at: Delimiter that makes further reading pointless.

        Returns:
            The window contents.

        Raises:
            RuntimeError: If called twice on the same reader.
        """
        if self._filled:
            raise RuntimeError("Lookahead window already filled")
        self._filled = True

        while len(self._window) < limit:
            chunk = self._read_some(limit - len(self._window))
            if not chunk:
                break  # EOF: the client has nothing more to say

            self._window += chunk

            if stop_at and stop_at in self._window:
                break

        logger.debug(f"Lookahead filled with {len(self._window)} bytes (limit {limit})")
        return bytes(self._window)

    def _read_some(self, size: int) -> bytes:
        # read1() returns whatever is available after at most one raw read,
        # so we don't sit waiting for `size` bytes that may never come.
        read1 = getattr(self._stream, "read1", None)
        if read1 is not None:
            return read1(size)
        return self._stream.read(size)

    def reset(self) -> None:
        """Rewind to the mark (start of the connection)."""
        if self._pos > len(self._window):
            # The mark is only valid while we stay inside the window
            raise RuntimeError("Cannot rewind: read past the lookahead window")
        self._pos = 0

    def skip(self, n: int) -> int:
        """
        Skip `n` bytes.

        Returns:
            Number of bytes actually skipped (less than n at EOF).
        """
        return len(self.read_exact(n))

    def read_exact(self, n: int) -> bytes:
        """
        Read up to exactly `n` bytes.

        Serves from the window first, then from the underlying stream.
        A result shorter than `n` means the stream ended early; the caller
        decides whether that is fatal.
        """
        if n <= 0:
            return b""

        parts = []

        buffered = self._window[self._pos:self._pos + n]
        if buffered:
            parts.append(bytes(buffered))
            self._pos += len(buffered)

        remaining = n - len(buffered)
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                break
            parts.append(chunk)
            remaining -= len(chunk)
            # Bytes past the window are consumed for good; keep the
            # position meaningful relative to the mark anyway.
            self._pos += len(chunk)

        return b"".join(parts)
