"""
=============================================================================
HTTPLISTENER CLI ENTRY POINT
=============================================================================

    # Run with defaults (127.0.0.1:8080, 64 workers)
    python -m httplistener

    # Custom port and pool size
    python -m httplistener --port 9999 --workers 16

    # Tighter header limit
    python -m httplistener --scan-limit 1024

Configuration starts from the environment (ServerConfig.from_env), then
command-line flags override it.

The demo routes registered here only log what they receive:

    GET  /          logs the query parameters
    POST /messages  logs the body size

=============================================================================
"""

import argparse
import logging
import sys

from . import __version__
from .config import ServerConfig, LOG_LEVELS
from .server import HTTPServer


logger = logging.getLogger("httplistener.demo")


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="httplistener",
        description="Minimal HTTP/1.1 request listener",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m httplistener                      # Run with defaults
  python -m httplistener --port 9999          # Custom port
  python -m httplistener --host 0.0.0.0       # Listen on all interfaces
  python -m httplistener --workers 8          # 8 worker threads
        """
    )

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})"
    )

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=defaults.pool_size,
        help=f"Worker pool size (default: {defaults.pool_size})"
    )

    parser.add_argument(
        "--scan-limit",
        type=int,
        default=defaults.scan_limit,
        help=f"Max bytes for request line + headers (default: {defaults.scan_limit})"
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=defaults.timeout,
        help="Per-connection socket timeout in seconds (default: %(default)s)"
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=LOG_LEVELS,
        default=defaults.log_level,
        help=f"Logging level (default: {defaults.log_level})"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"httplistener {__version__}"
    )

    return parser


def register_demo_routes(server: HTTPServer) -> None:
    @server.get("/")
    def index(request, out):
        logger.info(f"Query: {dict(request.query_params)}")

    @server.post("/messages")
    def messages(request, out):
        size = len(request.body) if request.body is not None else 0
        logger.info(f"Received message of {size} bytes")


def main(argv=None) -> int:
    """CLI entry point. Returns the process exit code."""
    try:
        defaults = ServerConfig.from_env()
    except ValueError as e:
        print(f"Error: invalid environment configuration: {e}", file=sys.stderr)
        return 2

    args = build_parser(defaults).parse_args(argv)

    config = ServerConfig(
        host=args.host,
        port=args.port,
        pool_size=args.workers,
        scan_limit=args.scan_limit,
        timeout=args.timeout,
        log_level=args.log_level,
    )

    try:
        server = HTTPServer(config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    register_demo_routes(server)

    try:
        server.run()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
