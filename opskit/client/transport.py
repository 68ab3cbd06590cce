"""Round-trippers: callables that turn a Request into a Response.

A middleware wraps one round-tripper and returns another.
``chain(base, a, b, c)`` builds ``a(b(c(base)))``.
"""

from __future__ import annotations

import dataclasses
import io
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from email.message import Message
from typing import Any, BinaryIO, Callable, Mapping, Optional


@dataclass(frozen=True)
class Request:
    """An outgoing HTTP request.

    ``timeout`` is in seconds; ``None`` leaves the choice to the round-tripper.
    """

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    timeout: Optional[float] = None

    def header(self, name: str) -> Optional[str]:
        """Return the value of header ``name`` (case-insensitive), or ``None``."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    def with_header(self, key: str, value: str) -> "Request":
        """Return a copy with header ``key`` set to ``value``, replacing any old value."""
        wanted = key.lower()
        headers = {k: v for k, v in self.headers.items() if k.lower() != wanted}
        headers[key] = value
        return dataclasses.replace(self, headers=headers)


@dataclass
class Response:
    """An HTTP response; ``body`` is a readable, closable binary stream."""

    status: int
    headers: Message = field(default_factory=Message)
    body: BinaryIO = field(default_factory=io.BytesIO)


RoundTripper = Callable[[Request], Response]
Middleware = Callable[[RoundTripper], RoundTripper]


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    """Leave redirects to the caller: 3xx responses come back as they are."""

    def redirect_request(self, *args: Any, **kwargs: Any) -> None:
        return None


@dataclass
class UrllibTransport:
    """A round-tripper built on urllib that never follows redirects itself."""

    timeout: Optional[float] = None
    ssl_context: Optional[ssl.SSLContext] = None

    def clone(self) -> "UrllibTransport":
        """Return an independent copy with the same settings."""
        return dataclasses.replace(self)

    def __call__(self, request: Request) -> Response:
        outgoing = urllib.request.Request(
            request.url,
            data=request.body,
            headers=dict(request.headers),
            method=request.method,
        )
        opener = urllib.request.build_opener(
            _NoRedirect, urllib.request.HTTPSHandler(context=self.ssl_context)
        )
        timeout = request.timeout if request.timeout is not None else self.timeout
        kwargs = {"timeout": timeout} if timeout is not None else {}
        try:
            reply = opener.open(outgoing, **kwargs)
        except urllib.error.HTTPError as err:
            return Response(status=err.code, headers=err.headers, body=err)
        return Response(status=reply.status, headers=reply.headers, body=reply)


DEFAULT_TRANSPORT = UrllibTransport()


def chain(base: Optional[RoundTripper], *args: Optional[Middleware]) -> RoundTripper:
    """Wrap ``base`` in the given middlewares, the first one outermost.

    ``None`` middlewares are skipped. A ``None`` base becomes an independent
    copy of ``DEFAULT_TRANSPORT``.
    """
    round_tripper: RoundTripper = base if base is not None else DEFAULT_TRANSPORT.clone()
    for middleware in reversed(args):
        if middleware is not None:
            round_tripper = middleware(round_tripper)
    return round_tripper


def set_header(key: str, value: str) -> Middleware:
    """Return a middleware that sets header ``key`` on every request.

    The request is copied, never changed in place. An empty key gives a no-op.
    """
    if not key:
        return lambda next_rt: next_rt

    def middleware(next_rt: RoundTripper) -> RoundTripper:
        def round_trip(request: Request) -> Response:
            return next_rt(request.with_header(key, value))

        return round_trip

    return middleware