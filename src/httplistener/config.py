"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the listener.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │   Priority (highest to lowest):                                     │
    │                                                                     │
    │   1. Command-line arguments                                         │
    │      └── python -m httplistener --port 3000                         │
    │                                                                     │
    │   2. Environment variables                                          │
    │      └── HTTP_PORT=3000 python -m httplistener                      │
    │                                                                     │
    │   3. Defaults in ServerConfig                                       │
    └─────────────────────────────────────────────────────────────────────┘

The three knobs that shape the protocol are the port, the worker-pool size
and the scan limit. Everything else is operational tuning.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ServerConfig:
    """
    Configuration for the HTTP listener.

    Development:
        ServerConfig(port=8080, pool_size=4, log_level="DEBUG")

    Production:
        ServerConfig(host="0.0.0.0", port=80, pool_size=128)
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """Address to bind. "0.0.0.0" listens on every interface."""

    port: int = 8080
    """Port to listen on. 0 lets the OS pick a free one (tests)."""

    backlog: int = 128
    """Accept queue length handed to listen()."""

    timeout: Optional[float] = 30.0
    """
    Socket timeout per connection, in seconds.
    A client that stalls mid-request is cut off after this long instead
    of holding a worker forever. None = wait indefinitely.
    """

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL LIMITS
    # ─────────────────────────────────────────────────────────────────────

    scan_limit: int = 4096
    """
    Maximum bytes inspected for the request line plus headers.
    No header terminator within this many bytes → 400.
    """

    max_body_size: int = 10 * 1024 * 1024  # 10 MB
    """Largest Content-Length accepted for POST bodies."""

    # ─────────────────────────────────────────────────────────────────────
    # WORKER POOL
    # ─────────────────────────────────────────────────────────────────────

    pool_size: int = 64
    """
    Number of worker threads, and therefore the ceiling on requests
    handled at the same time. Further connections wait in the queue.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING / IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """DEBUG, INFO, WARNING, ERROR or CRITICAL."""

    server_name: str = "httplistener/1.0"
    """Shown in the startup banner and logs."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

            HTTP_HOST        Bind address       (default: 127.0.0.1)
            HTTP_PORT        Port               (default: 8080)
            HTTP_POOL_SIZE   Worker threads     (default: 64)
            HTTP_SCAN_LIMIT  Header scan limit  (default: 4096)
            HTTP_TIMEOUT     Socket timeout, s  (default: 30, "none" disables)
            HTTP_LOG_LEVEL   Logging level      (default: INFO)
        """
        timeout = os.getenv("HTTP_TIMEOUT", "30")
        return cls(
            host=os.getenv("HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            pool_size=int(os.getenv("HTTP_POOL_SIZE", "64")),
            scan_limit=int(os.getenv("HTTP_SCAN_LIMIT", "4096")),
            timeout=None if timeout.lower() == "none" else float(timeout),
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by HTTPServer at construction so a bad value fails at
        startup, not on the first request.

        Raises:
            ValueError: On the first invalid setting.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.pool_size < 1:
            raise ValueError("pool_size must be >= 1")

        # Room for at least "\r\n" + "\r\n\r\n"
        if self.scan_limit < 6:
            raise ValueError("scan_limit must be >= 6")

        if self.max_body_size < 0:
            raise ValueError("max_body_size must be >= 0")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid log_level: {self.log_level}")
