"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking plumbing underneath the HTTP layer:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  SocketServer   bind / listen / accept loop                         │
    │       │                                                             │
    │       ▼                                                             │
    │  ThreadPool     fixed number of workers, one connection each        │
    │       │                                                             │
    │       ▼                                                             │
    │  Connection     lookahead reader, output sink, lifecycle state      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState, InvalidTransition
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",       # Accept loop
    "Connection",         # Wrapper for one client socket
    "ConnectionState",    # Lifecycle states
    "InvalidTransition",  # Raised on an illegal state change
    "ThreadPool",         # Worker threads
]
