"""
=============================================================================
HTTPLISTENER
=============================================================================

A minimal HTTP/1.1 request listener built directly on sockets.

    ┌─────────────────────────────────────────────────────────────────────┐
    │  Listener → Worker pool → Parser → Router → Handler → Response      │
    └─────────────────────────────────────────────────────────────────────┘

- GET and POST only, exact (method, path) routing
- Request line + headers bounded by a scan limit (4096 bytes default)
- Fixed, body-less responses: 200, 400, 404, always Connection: close

Quick start:

    from httplistener import HTTPServer, ServerConfig

    server = HTTPServer(ServerConfig(port=9999))

    @server.post("/messages")
    def save(request, out):
        print(request.body)

    server.run()

=============================================================================
"""

from .config import ServerConfig
from .server import HTTPServer, HandlerFailure, create_app
from .http import (
    Request,
    RequestParser,
    Router,
    RouteNotFound,
    HTTPStatus,
    HTTPParseError,
    MalformedRequestLine,
    MalformedHeaders,
    InvalidContentLength,
    TruncatedStream,
    parse_request,
)

__version__ = "1.0.0"

__all__ = [
    # Server
    "HTTPServer",
    "ServerConfig",
    "create_app",
    "HandlerFailure",

    # Requests
    "Request",
    "RequestParser",
    "parse_request",

    # Errors
    "HTTPParseError",
    "MalformedRequestLine",
    "MalformedHeaders",
    "InvalidContentLength",
    "TruncatedStream",
    "RouteNotFound",

    # Routing / responses
    "Router",
    "HTTPStatus",

    "__version__",
]
