"""
=============================================================================
HTTP LISTENER
=============================================================================

Ties the pieces together: listener, worker pool, parser, router and
response writer.

=============================================================================
REQUEST LIFECYCLE
=============================================================================

    1. CLIENT CONNECTS
       └── SocketServer accepts, wraps the socket in a Connection

    2. QUEUE FOR PROCESSING
       └── Connection queued on the ThreadPool (waits if all workers busy)

    3. PARSE (worker thread)
       └── RequestParser reads ≤ scan_limit bytes of head, then the body
       └── Any failure → 400, close

    4. ROUTE
       └── Router.match(method, path)
       └── Nothing registered → 404, close

    5. INVOKE HANDLER
       └── handler(request, conn.sink)
       └── If it raises: log it, carry on

    6. RESPOND
       └── 200, close

Exactly one response per connection, never more, never a retry.

=============================================================================
HANDLER FAILURES STILL GET 200
=============================================================================

A handler that raises is logged with its traceback, and the client still
receives "200 OK". Handlers may already have written bytes to the sink, so
there is no clean way to turn the exchange into an error response after
the fact; the status line is sent regardless of the outcome.

=============================================================================
"""

import logging
import time
from typing import Callable, Optional

from .config import ServerConfig
from .core import SocketServer, Connection, ConnectionState, ThreadPool
from .http import (
    HTTPParseError,
    HTTPStatus,
    Request,
    RequestParser,
    Router,
)
from .http.router import Handler


logger = logging.getLogger(__name__)


class HandlerFailure(Exception):
    """
    An exception escaped a route handler.

    Wraps the original (available as __cause__ and .original). Logged,
    never shown to the client.
    """

    def __init__(self, request: Request, original: BaseException):
        super().__init__(
            f"Handler for {request.method} {request.path} failed: "
            f"{type(original).__name__}: {original}"
        )
        self.request = request
        self.original = original


def invoke_handler(handler: Handler, request: Request, sink) -> Optional[HandlerFailure]:
    """
    Run a handler behind a boundary that converts any error into a value.

    Returns:
        None on success, or the HandlerFailure describing what went wrong.
    """
    try:
        handler(request, sink)
    except Exception as e:
        failure = HandlerFailure(request, e)
        failure.__cause__ = e
        return failure
    return None


class HTTPServer:
    """
    Minimal HTTP/1.1 listener.

    Usage:
        server = HTTPServer(ServerConfig(port=9999, pool_size=64))

        @server.get("/search")
        def search(request, out):
            print(request.get_query_list("q"))

        @server.post("/submit")
        def submit(request, out):
            store(request.body)

        server.run()  # Blocks until Ctrl+C
    """

    def __init__(self, config: Optional[ServerConfig] = None, router: Optional[Router] = None):
        """
        Args:
            config: Server configuration. Defaults if not provided.
            router: Pre-built route table. A fresh one if not provided.
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self._socket_server = SocketServer(self.config)
        self._thread_pool = ThreadPool(pool_size=self.config.pool_size)
        self._parser = RequestParser(
            scan_limit=self.config.scan_limit,
            max_body_size=self.config.max_body_size,
        )
        self._router = router or Router()

        self._running = False

    # =========================================================================
    # ROUTE REGISTRATION
    # =========================================================================

    @property
    def router(self) -> Router:
        return self._router

    def add_handler(self, method: str, path: str, handler: Handler) -> Handler:
        """Register `handler` for exactly (method, path). Before run() only."""
        return self._router.add_route(method, path, handler)

    register = add_handler

    def get(self, path: str) -> Callable[[Handler], Handler]:
        """Decorator: register a GET handler."""
        return self._router.get(path)

    def post(self, path: str) -> Callable[[Handler], Handler]:
        """Decorator: register a POST handler."""
        return self._router.post(path)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def address(self):
        """(host, port) actually bound, once listening."""
        return self._socket_server.address

    @property
    def is_running(self) -> bool:
        return self._running

    def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """
        Start serving (blocking).

        Freezes the route table, starts the worker pool, then runs the
        accept loop on the calling thread until shutdown() or a signal.

        Args:
            host: Override config host.
            port: Override config port.
        """
        if host:
            self.config.host = host
        if port is not None:
            self.config.port = port

        self._setup_logging()

        # Registration must be over before the first worker reads the table
        self._router.freeze()
        self._thread_pool.start()
        self._running = True

        self._print_startup_banner()

        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listener accepts connections (for tests)."""
        return self._socket_server.wait_until_ready(timeout)

    def shutdown(self):
        """Ask the accept loop to stop; run() returns once it has."""
        self._socket_server.shutdown()

    def _print_startup_banner(self):
        print()
        print(f"  {self.config.server_name} listening on "
              f"http://{self.config.host}:{self.config.port}")
        print(f"  Workers: {self.config.pool_size}   Scan limit: {self.config.scan_limit} bytes")
        print("  Press Ctrl+C to stop")
        self._router.print_routes()

    def _setup_logging(self):
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("httplistener").setLevel(level)

    def _shutdown(self):
        logger.info("Shutting down server...")
        self._running = False

        # In-flight requests finish; queued ones are still answered
        self._thread_pool.shutdown(wait=True, timeout=30.0)

        logger.info("Server stopped")

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Called on the accept thread: queue the connection and return."""
        self._thread_pool.submit(self._process_connection, args=(conn,))

    def _process_connection(self, conn: Connection) -> ConnectionState:
        """
        Handle one connection from parse to close (worker thread).

        Returns:
            The terminal response state reached before closing
            (OK_SENT, BAD_REQUEST_SENT, NOT_FOUND_SENT), or the last state
            reached if the client disappeared first.
        """
        start_time = time.time()
        final_state = conn.state

        with conn:  # Always closed, whatever happens below
            try:
                final_state = self._exchange(conn)
            except Exception as e:
                # Socket trouble mid-exchange; the client is likely gone
                logger.exception(f"[{conn.id}] Connection error: {e}")
                final_state = conn.state

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(f"[{conn.id}] {final_state.value} in {duration_ms:.2f}ms")
        return final_state

    def _exchange(self, conn: Connection) -> ConnectionState:
        # ─────────────────────────────────────────────────────────────────
        # PARSE
        # ─────────────────────────────────────────────────────────────────
        conn.transition(ConnectionState.PARSING)
        try:
            request = self._parser.parse(conn.reader, conn.address)
        except HTTPParseError as e:
            conn.transition(ConnectionState.PARSE_FAILED)
            logger.info(f"[{conn.id}] {conn.client_ip} {type(e).__name__}: {e}")
            self._respond(conn, HTTPStatus.BAD_REQUEST, "-")
            return conn.state
        conn.transition(ConnectionState.PARSED)

        # ─────────────────────────────────────────────────────────────────
        # ROUTE
        # ─────────────────────────────────────────────────────────────────
        conn.transition(ConnectionState.ROUTING)
        handler = self._router.match(request.method, request.path)
        if handler is None:
            conn.transition(ConnectionState.NOT_FOUND)
            self._respond(conn, HTTPStatus.NOT_FOUND, f"{request.method} {request.target}")
            return conn.state
        conn.transition(ConnectionState.FOUND)

        # ─────────────────────────────────────────────────────────────────
        # INVOKE
        # ─────────────────────────────────────────────────────────────────
        failure = invoke_handler(handler, request, conn.sink)
        conn.transition(ConnectionState.HANDLER_INVOKED)
        if failure is not None:
            logger.error(f"[{conn.id}] {failure}", exc_info=failure.original)

        # ─────────────────────────────────────────────────────────────────
        # RESPOND
        # ─────────────────────────────────────────────────────────────────
        self._respond(conn, HTTPStatus.OK, f"{request.method} {request.target}")
        return conn.state

    def _respond(self, conn: Connection, status: HTTPStatus, summary: str) -> bool:
        """Send `status` and write the access line for what actually went out."""
        if conn.send_response(status):
            logger.info(f"[{conn.id}] {conn.client_ip} \"{summary}\" {int(status)}")
            return True

        logger.info(f"[{conn.id}] {conn.client_ip} \"{summary}\" {int(status)} not delivered, client gone")
        return False


def create_app(config: Optional[ServerConfig] = None) -> HTTPServer:
    """
    Factory for server instances.

        app = create_app(ServerConfig(port=3000))

        @app.get("/")
        def index(request, out):
            ...

        app.run()
    """
    return HTTPServer(config)
