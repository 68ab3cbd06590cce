"""WSGI middleware chains.

A middleware is a callable that takes a WSGI application and returns a new
one. ``chain(a, b, c).handler(app)`` builds ``a(b(c(app)))``.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

WSGIApp = Callable[..., Iterable[bytes]]
Middleware = Callable[[WSGIApp], WSGIApp]


def _non_nil(middlewares: Iterable[Optional[Middleware]]) -> list[Middleware]:
    return [mw for mw in middlewares if mw is not None]


class Middlewares(list):
    """An ordered list of middlewares; the first one is the outermost."""

    def derive(self, *args: Optional[Middleware]) -> "Middlewares":
        """Return a new chain with ``args`` appended; ``None`` entries are dropped.

        The receiver is never modified and the result shares no storage with it.
        """
        return Middlewares(_non_nil([*self, *args]))

    def handler(self, app: Optional[WSGIApp]) -> "ChainHandler":
        """Build a WSGI application with ``app`` as the final endpoint.

        The chain is snapshotted, so later changes to this list do not affect
        the returned handler.
        """
        if app is None:
            raise ValueError("nil endpoint application")
        return ChainHandler(app, tuple(_non_nil(self)))


class ChainHandler:
    """A composed WSGI application that keeps its endpoint and middleware snapshot."""

    def __init__(self, endpoint: WSGIApp, middlewares: tuple[Middleware, ...]) -> None:
        self.endpoint = endpoint
        self.middlewares = middlewares
        app = endpoint
        for mw in reversed(middlewares):
            app = mw(app)
        self._app = app

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> Iterable[bytes]:
        return self._app(environ, start_response)


def chain(*args: Optional[Middleware]) -> Middlewares:
    """Create a middleware chain; ``None`` entries are ignored."""
    return Middlewares(_non_nil(args))


def wrap(app: Optional[WSGIApp], *args: Optional[Middleware]) -> ChainHandler:
    """Apply ``args`` to ``app`` and return the wrapped application."""
    return chain(*args).handler(app)