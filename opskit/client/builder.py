"""An HTTP client with an independent transport and a round-tripper chain."""

from __future__ import annotations

import contextlib
import dataclasses
import time
import urllib.request
from dataclasses import dataclass
from email.message import Message
from http.cookiejar import CookieJar
from typing import Callable, Iterable, Optional, Sequence
from urllib.parse import urljoin, urlsplit

from opskit.client.bodyio import drain_and_close
from opskit.client.transport import (
    Middleware,
    Request,
    Response,
    RoundTripper,
    UrllibTransport,
    chain,
)

CheckRedirect = Callable[[Request, Sequence[Request]], Optional[bool]]

_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
_MAX_REDIRECTS = 10
_DRAIN_BYTES = 2 << 10
_SENSITIVE_HEADERS = frozenset({"authorization", "www-authenticate", "cookie"})


def _default_check_redirect(request: Request, via: Sequence[Request]) -> None:
    if len(via) >= _MAX_REDIRECTS:
        raise RuntimeError(f"stopped after {_MAX_REDIRECTS} redirects")


class _CookieResponse:
    def __init__(self, headers: Message) -> None:
        self._headers = headers

    def info(self) -> Message:
        return self._headers


@dataclass
class Client:
    """Sends requests through ``transport``, following redirects.

    ``timeout`` is a total deadline in seconds over all redirects; zero means
    none. ``check_redirect(next_request, via)`` is consulted before each
    redirect: raising aborts with that error, returning ``False`` hands back
    the redirect response itself, anything else follows it. Without it, ten
    redirects are followed at most.
    """

    transport: RoundTripper
    timeout: float = 0.0
    check_redirect: Optional[CheckRedirect] = None
    cookie_jar: Optional[CookieJar] = None

    def do(self, request: Request) -> Response:
        """Send ``request`` and return the final response."""
        deadline = time.monotonic() + self.timeout if self.timeout > 0 else None
        base_timeout = request.timeout
        via: list[Request] = []
        current = request
        while True:
            if self.cookie_jar is not None:
                current = self._add_cookies(current)
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError("client timeout exceeded")
                hop_timeout = remaining if base_timeout is None else min(remaining, base_timeout)
                current = dataclasses.replace(current, timeout=hop_timeout)

            response = self.transport(current)
            if self.cookie_jar is not None:
                self._store_cookies(current, response)

            location = response.headers.get("Location")
            if response.status not in _REDIRECT_STATUSES or not location:
                return response

            next_request = _redirect_request(current, response.status, location, base_timeout)
            via.append(current)
            policy = self.check_redirect or _default_check_redirect
            try:
                decision = policy(next_request, tuple(via))
            except Exception:
                with contextlib.suppress(Exception):
                    response.body.close()
                raise
            if decision is False:
                return response
            with contextlib.suppress(Exception):
                drain_and_close(response.body, _DRAIN_BYTES)
            current = next_request

    def _add_cookies(self, request: Request) -> Request:
        probe = urllib.request.Request(request.url, method=request.method)
        self.cookie_jar.add_cookie_header(probe)
        cookie = probe.get_header("Cookie")
        return request.with_header("Cookie", cookie) if cookie else request

    def _store_cookies(self, request: Request, response: Response) -> None:
        probe = urllib.request.Request(request.url, method=request.method)
        self.cookie_jar.extract_cookies(_CookieResponse(response.headers), probe)


def _redirect_request(
    request: Request, status: int, location: str, timeout: Optional[float]
) -> Request:
    url = urljoin(request.url, location)
    method, body = request.method, request.body
    headers = dict(request.headers)
    if status in (301, 302, 303):
        if method not in ("GET", "HEAD"):
            method = "GET"
        body = None
        headers = {
            k: v for k, v in headers.items() if k.lower() not in ("content-type", "content-length")
        }
    if urlsplit(url).hostname != urlsplit(request.url).hostname:
        headers = {k: v for k, v in headers.items() if k.lower() not in _SENSITIVE_HEADERS}
    return Request(method=method, url=url, headers=headers, body=body, timeout=timeout)


def new_client(
    timeout: float = 0.0,
    transport: Optional[UrllibTransport] = None,
    round_tripper: Optional[RoundTripper] = None,
    middlewares: Iterable[Optional[Middleware]] = (),
    check_redirect: Optional[CheckRedirect] = None,
    cookie_jar: Optional[CookieJar] = None,
) -> Client:
    """Build a Client whose base round-tripper is never shared global state.

    ``round_tripper`` wins over ``transport``; ``transport`` is cloned; with
    neither, a copy of the default transport is used. ``None`` middlewares are
    skipped.
    """
    if round_tripper is not None:
        base: Optional[RoundTripper] = round_tripper
    elif transport is not None:
        base = transport.clone()
    else:
        base = None
    return Client(
        transport=chain(base, *middlewares),
        timeout=timeout,
        check_redirect=check_redirect,
        cookie_jar=cookie_jar,
    )