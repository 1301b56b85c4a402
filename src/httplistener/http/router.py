"""
=============================================================================
EXACT-MATCH ROUTER
=============================================================================

Maps (method, path) to a handler. No patterns, no wildcards, no trailing
slash normalization: "/users" and "/users/" are different routes.

=============================================================================
ROUTE TABLE
=============================================================================

Two-level lookup, first by method, then by path:

    ┌─────────────────────────────────────────────────────────────────────┐
    │   _routes = {                                                       │
    │       "GET":  { "/":       index,                                   │
    │                 "/search": search },                                │
    │       "POST": { "/submit": submit },                                │
    │   }                                                                 │
    │                                                                     │
    │   match("GET", "/search")   → search                                │
    │   match("POST", "/search")  → None   (404)                          │
    │   match("GET", "/nope")     → None   (404)                          │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THREAD SAFETY
=============================================================================

Routes are registered at startup, then the table is frozen before the
server accepts its first connection. After that it is only ever read, and
plain dict reads are safe from any number of threads, so no lock is needed.
Registering after freeze() raises instead of silently racing the workers.

=============================================================================
"""

from typing import BinaryIO, Callable, Dict, List, Optional, Tuple
import logging

from .request import ALLOWED_METHODS, Request


logger = logging.getLogger(__name__)


# Handler: receives the parsed request and the connection's output sink.
# Whatever it writes goes out BEFORE the server's own status line.
# The return value is ignored.
Handler = Callable[[Request, BinaryIO], None]


class RouteNotFound(Exception):
    """No handler for (method, path). Answered with 404."""

    status_code = 404

    def __init__(self, method: str, path: str):
        super().__init__(f"No route for {method} {path}")
        self.method = method
        self.path = path


class Router:
    """
    Exact (method, path) → handler table.

    Usage:
        router = Router()

        @router.get("/search")
        def search(request, out):
            ...

        router.add_route("POST", "/submit", submit)
        router.freeze()

        handler = router.match("GET", "/search")
    """

    def __init__(self):
        self._routes: Dict[str, Dict[str, Handler]] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        """True once registration is over."""
        return self._frozen

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def add_route(self, method: str, path: str, handler: Handler) -> Handler:
        """
        Register `handler` for exactly (method, path).

        Registering the same key twice replaces the earlier handler.

        Raises:
            RuntimeError: If the router has been frozen.
            ValueError: For unsupported methods or paths without a leading "/".
        """
        if self._frozen:
            raise RuntimeError("Router is frozen; register routes before serving")

        method = method.upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(
                f"Unsupported method {method!r}; expected one of {', '.join(ALLOWED_METHODS)}"
            )
        if not path.startswith("/"):
            raise ValueError(f"Route path must start with '/': {path!r}")

        paths = self._routes.setdefault(method, {})
        if path in paths:
            logger.warning(f"Replacing handler for {method} {path}")
        paths[path] = handler
        return handler

    # Same thing under the name used by the handler registration API
    register = add_route

    def route(self, method: str, path: str) -> Callable[[Handler], Handler]:
        """
        Decorator form of add_route().

            @router.route("POST", "/submit")
            def submit(request, out):
                ...
        """
        def decorator(handler: Handler) -> Handler:
            self.add_route(method, path, handler)
            return handler
        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        """Register a GET route."""
        return self.route("GET", path)

    def post(self, path: str) -> Callable[[Handler], Handler]:
        """Register a POST route."""
        return self.route("POST", path)

    def freeze(self) -> None:
        """End the registration phase. Idempotent."""
        self._frozen = True

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def match(self, method: str, path: str) -> Optional[Handler]:
        """Return the handler for (method, path), or None."""
        paths = self._routes.get(method)
        if paths is None:
            return None
        return paths.get(path)

    def resolve(self, method: str, path: str) -> Handler:
        """
        Like match(), but raises RouteNotFound instead of returning None.

        An unknown method and an unknown path under a known method are
        reported the same way.
        """
        handler = self.match(method, path)
        if handler is None:
            raise RouteNotFound(method, path)
        return handler

    def routes(self) -> List[Tuple[str, str]]:
        """All registered (method, path) keys, sorted."""
        return sorted(
            (method, path)
            for method, paths in self._routes.items()
            for path in paths
        )

    def __len__(self) -> int:
        return sum(len(paths) for paths in self._routes.values())

    def print_routes(self) -> None:
        """
        Print all registered routes (startup banner).

            Registered Routes:
            ------------------------------------------------------------
              GET      /
              POST     /submit
            ------------------------------------------------------------
        """
        print("\nRegistered Routes:")
        print("-" * 60)
        for method, path in self.routes():
            print(f"  {method:8} {path}")
        print("-" * 60)
