"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

The wire-level pieces of the listener:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  stream.py    LookaheadReader   peek / rewind over the socket       │
    │  request.py   RequestParser     bytes → Request (or parse failure)  │
    │  router.py    Router            (method, path) → handler            │
    │  response.py  write_response    200 / 400 / 404, fixed shapes       │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .stream import LookaheadReader
from .request import (
    Request,
    RequestParser,
    parse_request,
    parse_query,
    # Parse failures, all answered with 400
    HTTPParseError,
    MalformedRequestLine,
    MalformedHeaders,
    InvalidContentLength,
    TruncatedStream,
    GET,
    POST,
    ALLOWED_METHODS,
    DEFAULT_SCAN_LIMIT,
)
from .response import HTTPStatus, HTTPResponse, write_response, response_for
from .router import Router, RouteNotFound, Handler

__all__ = [
    # Reading
    "LookaheadReader",

    # Request parsing
    "Request",
    "RequestParser",
    "parse_request",
    "parse_query",
    "HTTPParseError",
    "MalformedRequestLine",
    "MalformedHeaders",
    "InvalidContentLength",
    "TruncatedStream",
    "GET",
    "POST",
    "ALLOWED_METHODS",
    "DEFAULT_SCAN_LIMIT",

    # Responses
    "HTTPStatus",
    "HTTPResponse",
    "write_response",
    "response_for",

    # Routing
    "Router",
    "RouteNotFound",
    "Handler",
]
