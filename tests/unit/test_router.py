"""
Unit tests for the exact-match router.
"""

import logging

import pytest

from httplistener.http.router import Router, RouteNotFound


def handler_a(request, out):
    pass


def handler_b(request, out):
    pass


class TestRegistration:
    """Tests for adding routes."""

    def test_add_and_match(self):
        router = Router()
        router.add_route("GET", "/search", handler_a)

        assert router.match("GET", "/search") is handler_a

    def test_decorators(self):
        router = Router()

        @router.get("/")
        def index(request, out):
            pass

        @router.post("/submit")
        def submit(request, out):
            pass

        assert router.match("GET", "/") is index
        assert router.match("POST", "/submit") is submit
        assert router.routes() == [("GET", "/"), ("POST", "/submit")]

    def test_method_is_upper_cased(self):
        router = Router()
        router.add_route("post", "/x", handler_a)

        assert router.match("POST", "/x") is handler_a

    def test_reregistration_replaces(self, caplog):
        """Last registration wins, with a warning."""
        router = Router()
        router.add_route("GET", "/x", handler_a)

        with caplog.at_level(logging.WARNING):
            router.add_route("GET", "/x", handler_b)

        assert router.match("GET", "/x") is handler_b
        assert len(router) == 1
        assert "Replacing handler" in caplog.text

    @pytest.mark.parametrize("method", ["PUT", "DELETE", "HEAD", ""])
    def test_unsupported_method_rejected(self, method):
        with pytest.raises(ValueError):
            Router().add_route(method, "/x", handler_a)

    def test_path_needs_leading_slash(self):
        with pytest.raises(ValueError):
            Router().add_route("GET", "x", handler_a)

    def test_frozen_rejects_registration(self):
        router = Router()
        router.add_route("GET", "/x", handler_a)
        router.freeze()

        assert router.frozen
        with pytest.raises(RuntimeError):
            router.add_route("GET", "/y", handler_b)

        # Lookups still work
        assert router.match("GET", "/x") is handler_a

    def test_register_alias(self):
        router = Router()
        router.register("GET", "/alias", handler_a)
        assert router.match("GET", "/alias") is handler_a


class TestLookup:
    """Tests for exact matching."""

    @pytest.fixture
    def router(self):
        router = Router()
        router.add_route("GET", "/users", handler_a)
        router.add_route("POST", "/users", handler_b)
        return router

    def test_method_discriminates(self, router):
        assert router.match("GET", "/users") is handler_a
        assert router.match("POST", "/users") is handler_b

    def test_wrong_method_is_no_match(self):
        router = Router()
        router.add_route("GET", "/only-get", handler_a)

        assert router.match("POST", "/only-get") is None

    @pytest.mark.parametrize("path", ["/users/", "/Users", "/users/1", "/", "/user"])
    def test_no_normalization(self, router, path):
        """Trailing slashes, case and prefixes all count."""
        assert router.match("GET", path) is None

    def test_resolve_raises_not_found(self, router):
        with pytest.raises(RouteNotFound) as exc_info:
            router.resolve("GET", "/missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.method == "GET"
        assert exc_info.value.path == "/missing"

    def test_resolve_returns_handler(self, router):
        assert router.resolve("POST", "/users") is handler_b

    def test_empty_router(self):
        router = Router()

        assert len(router) == 0
        assert router.match("GET", "/") is None

    def test_print_routes(self, router, capsys):
        router.print_routes()

        out = capsys.readouterr().out
        assert "GET      /users" in out
        assert "POST     /users" in out
