"""
Unit tests for the connection lifecycle.

Uses socket.socketpair() so the full exchange runs without a listener.
"""

import logging
import socket

import pytest

from httplistener import HTTPServer, ServerConfig
from httplistener.core.connection import Connection, ConnectionState, InvalidTransition
from httplistener.http import HTTPStatus


OK_RESPONSE = b"HTTP/1.1 200 OK\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"
BAD_REQUEST_RESPONSE = b"HTTP/1.1 400 Bad Request\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"
NOT_FOUND_RESPONSE = b"HTTP/1.1 404 Not Found\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"


def read_all(sock: socket.socket) -> bytes:
    chunks = []
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


@pytest.fixture
def pair():
    server_side, client_side = socket.socketpair()
    client_side.settimeout(5.0)
    yield server_side, client_side
    client_side.close()
    server_side.close()


@pytest.fixture
def server():
    server = HTTPServer(ServerConfig(pool_size=1, timeout=2.0))
    calls = []

    @server.get("/hello")
    def hello(request, out):
        calls.append(request)

    @server.post("/boom")
    def boom(request, out):
        calls.append(request)
        out.write(b"partial\n")
        raise RuntimeError("handler blew up")

    server.calls = calls
    return server


def exchange(server, pair, raw: bytes):
    """Run one connection through the server and return (state, history, reply)."""
    server_side, client_side = pair
    client_side.sendall(raw)
    client_side.shutdown(socket.SHUT_WR)

    conn = Connection(socket=server_side, address=("127.0.0.1", 50000), timeout=2.0)
    final_state = server._process_connection(conn)

    return final_state, conn.history, read_all(client_side)


class TestExchange:

    def test_ok(self, server, pair):
        state, history, reply = exchange(server, pair, b"GET /hello?x=1 HTTP/1.1\r\nHost: t\r\n\r\n")

        assert state == ConnectionState.OK_SENT
        assert reply == OK_RESPONSE
        assert history == [
            ConnectionState.ACCEPTED,
            ConnectionState.PARSING,
            ConnectionState.PARSED,
            ConnectionState.ROUTING,
            ConnectionState.FOUND,
            ConnectionState.HANDLER_INVOKED,
            ConnectionState.OK_SENT,
            ConnectionState.CLOSED,
        ]
        assert server.calls[0].get_query("x") == "1"
        assert server.calls[0].client_address == ("127.0.0.1", 50000)

    def test_bad_request(self, server, pair):
        state, history, reply = exchange(server, pair, b"NOPE\r\n\r\n")

        assert state == ConnectionState.BAD_REQUEST_SENT
        assert reply == BAD_REQUEST_RESPONSE
        assert history == [
            ConnectionState.ACCEPTED,
            ConnectionState.PARSING,
            ConnectionState.PARSE_FAILED,
            ConnectionState.BAD_REQUEST_SENT,
            ConnectionState.CLOSED,
        ]
        assert server.calls == []

    def test_not_found(self, server, pair):
        state, history, reply = exchange(server, pair, b"POST /hello HTTP/1.1\r\nHost: t\r\n\r\n")

        assert state == ConnectionState.NOT_FOUND_SENT
        assert reply == NOT_FOUND_RESPONSE
        assert ConnectionState.FOUND not in history
        assert server.calls == []

    def test_handler_failure_still_ok(self, server, pair, caplog):
        raw = b"POST /boom HTTP/1.1\r\nContent-Length: 2\r\n\r\nhi"

        state, history, reply = exchange(server, pair, raw)

        assert state == ConnectionState.OK_SENT
        # Handler output precedes the status line
        assert reply == b"partial\n" + OK_RESPONSE
        assert server.calls[0].body == b"hi"
        assert "handler blew up" in caplog.text

    def test_empty_connection(self, server, pair):
        """Client connects and closes without sending anything."""
        state, _, reply = exchange(server, pair, b"")

        assert state == ConnectionState.BAD_REQUEST_SENT
        assert reply == BAD_REQUEST_RESPONSE


class TestLostResponse:
    """The access line reports only responses that actually went out."""

    def test_client_gone_before_response(self, pair, caplog):
        server_side, client_side = pair
        server = HTTPServer(ServerConfig(pool_size=1, timeout=2.0))

        @server.get("/h")
        def hang_up(request, out):
            client_side.close()

        caplog.set_level(logging.INFO, logger="httplistener")
        client_side.sendall(b"GET /h HTTP/1.1\r\nHost: t\r\n\r\n")
        conn = Connection(socket=server_side, address=("127.0.0.1", 50000), timeout=2.0)

        state = server._process_connection(conn)

        assert state == ConnectionState.HANDLER_INVOKED
        assert ConnectionState.OK_SENT not in conn.history
        assert "not delivered, client gone" in caplog.text
        assert not any(
            record.getMessage().endswith('"GET /h" 200') for record in caplog.records
        )

    def test_handler_closes_sink(self, pair, caplog):
        server = HTTPServer(ServerConfig(pool_size=1, timeout=2.0))

        @server.get("/closer")
        def closer(request, out):
            out.close()

        caplog.set_level(logging.INFO, logger="httplistener")
        state, history, reply = exchange(server, pair, b"GET /closer HTTP/1.1\r\nHost: t\r\n\r\n")

        assert state == ConnectionState.HANDLER_INVOKED
        assert history[-1] == ConnectionState.CLOSED
        assert reply == b""
        assert "output closed by handler" in caplog.text
        assert "Connection error" not in caplog.text


class TestStateMachine:

    def test_starts_accepted(self, pair):
        conn = Connection(socket=pair[0], address=("127.0.0.1", 1))

        assert conn.state == ConnectionState.ACCEPTED
        assert conn.history == [ConnectionState.ACCEPTED]
        assert conn.client_ip == "127.0.0.1"

    def test_no_skipping_states(self, pair):
        conn = Connection(socket=pair[0], address=("127.0.0.1", 1))

        with pytest.raises(InvalidTransition):
            conn.transition(ConnectionState.ROUTING)

    def test_no_going_back(self, pair):
        conn = Connection(socket=pair[0], address=("127.0.0.1", 1))
        conn.transition(ConnectionState.PARSING)
        conn.transition(ConnectionState.PARSED)

        with pytest.raises(InvalidTransition):
            conn.transition(ConnectionState.PARSING)

    def test_closed_reachable_from_anywhere(self, pair):
        conn = Connection(socket=pair[0], address=("127.0.0.1", 1))
        conn.transition(ConnectionState.PARSING)

        conn.close()

        assert conn.is_closed
        assert conn.history[-1] == ConnectionState.CLOSED

    def test_close_is_idempotent(self, pair):
        conn = Connection(socket=pair[0], address=("127.0.0.1", 1))

        conn.close()
        conn.close()

        assert conn.history.count(ConnectionState.CLOSED) == 1

    def test_only_one_response(self, pair):
        """A second status line is refused by the state machine."""
        conn = Connection(socket=pair[0], address=("127.0.0.1", 1))
        conn.transition(ConnectionState.PARSING)
        conn.transition(ConnectionState.PARSE_FAILED)

        assert conn.send_response(HTTPStatus.BAD_REQUEST)
        with pytest.raises(InvalidTransition):
            conn.send_response(HTTPStatus.BAD_REQUEST)
