"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import Generator, List, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httplistener import HTTPServer, ServerConfig
from httplistener.http import Request


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request with a query string."""
    return (
        b"GET /search?q=hello%20world&q=again HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: */*\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a 5 byte body."""
    return (
        b"POST /echo HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: text/plain\r\n"
        b"Content-Length: 5\r\n"
        b"\r\n"
        b"hello"
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def send_raw(port: int, data: bytes, shutdown_write: bool = True, timeout: float = 5.0) -> bytes:
    """
    Send raw bytes to the server and read until it closes the connection.

    shutdown_write=False keeps our side open, to prove the server answers
    without waiting for EOF.
    """
    with socket.create_connection(("127.0.0.1", port), timeout=timeout) as s:
        s.sendall(data)
        if shutdown_write:
            s.shutdown(socket.SHUT_WR)

        chunks = []
        while True:
            chunk = s.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)


class TestServer:
    """Test server helper that runs in a background thread."""

    __test__ = False  # Not a test class, despite the name

    def __init__(self, server: HTTPServer):
        self.server = server
        self.calls: List[Request] = []
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        """Start server in background thread and wait until it listens."""
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        """Stop the server."""
        self.server.shutdown()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=10.0)

    def send(self, data: bytes, **kwargs) -> bytes:
        return send_raw(self.port, data, **kwargs)


@pytest.fixture
def test_server() -> Generator[TestServer, None, None]:
    """A running server with a few recording routes."""
    server = HTTPServer(ServerConfig(
        host="127.0.0.1",
        port=0,  # Let the OS pick
        pool_size=4,
        timeout=5.0,
        log_level="WARNING",
    ))
    test_srv = TestServer(server)

    @server.get("/test")
    def test_route(request, out):
        test_srv.calls.append(request)

    @server.get("/search")
    def search_route(request, out):
        test_srv.calls.append(request)

    @server.post("/echo")
    def echo_route(request, out):
        test_srv.calls.append(request)

    @server.get("/fail")
    def failing_get(request, out):
        test_srv.calls.append(request)
        raise RuntimeError("boom")

    @server.post("/fail")
    def failing_post(request, out):
        test_srv.calls.append(request)
        raise ValueError("bad payload")

    @server.post("/write")
    def writing_route(request, out):
        test_srv.calls.append(request)
        out.write(b"handler-bytes\n")

    test_srv.start()

    yield test_srv

    test_srv.stop()
