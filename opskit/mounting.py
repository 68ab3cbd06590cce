"""Path validation, an exact/subtree path router, and prefix mounting for WSGI."""

from __future__ import annotations

import html
import posixpath
from http import HTTPStatus
from typing import Any, Callable, Optional

from opskit.chain import WSGIApp

_FORBIDDEN_CHARS = " \t\r\n?#"


def _check_path(path: str, what: str) -> str:
    path = path.strip()
    if not path:
        raise ValueError(f"{what}: empty path")
    if not path.startswith("/"):
        raise ValueError(f"{what}: invalid path (must start with '/'): {path}")
    if any(ch in path for ch in _FORBIDDEN_CHARS):
        raise ValueError(f"{what}: invalid path (contains whitespace or ?#): {path}")
    if "//" in path:
        raise ValueError(f"{what}: invalid path (contains //): {path}")
    return path


def normalize_path(path: str) -> str:
    """Validate an endpoint path and return it stripped of surrounding blanks."""
    return _check_path(path, "path")


def resolve_path(path: Optional[str], default: str) -> str:
    """Return ``default`` when ``path`` is empty or blank, else ``path``."""
    if path is None or not path.strip():
        return default
    return path


def normalize_mount_prefix(prefix: str) -> str:
    """Validate a mount prefix and make sure it ends with '/'."""
    prefix = _check_path(prefix, "mount prefix")
    if not prefix.endswith("/"):
        prefix += "/"
    return prefix


def _redirect(
    environ: dict[str, Any],
    start_response: Callable[..., Any],
    location: str,
    status: HTTPStatus,
) -> list[bytes]:
    headers = [("Location", location)]
    body = b""
    if environ.get("REQUEST_METHOD", "GET") == "GET":
        headers.append(("Content-Type", "text/html; charset=utf-8"))
        body = f'<a href="{html.escape(location)}">{status.phrase}</a>.\n'.encode("utf-8")
    start_response(f"{status.value} {status.phrase}", headers)
    return [body] if body else []


def _with_query(environ: dict[str, Any], target: str) -> str:
    query = environ.get("QUERY_STRING", "")
    return f"{target}?{query}" if query else target


def mount_prefix(prefix: str, subtree: Optional[WSGIApp], fallback: Optional[WSGIApp]) -> WSGIApp:
    """Route paths under ``prefix`` to ``subtree`` and everything else to ``fallback``.

    The prefix is stripped (keeping a leading '/') before ``subtree`` sees the
    path. A request for the prefix without its trailing slash is redirected
    there with 307, keeping the query string.
    """
    prefix = normalize_mount_prefix(prefix)
    base = prefix[:-1]
    if subtree is None:
        raise ValueError("mount prefix: nil subtree application")
    if fallback is None:
        raise ValueError("mount prefix: nil fallback application")

    def app(environ: dict[str, Any], start_response: Callable[..., Any]) -> Any:
        path = environ.get("PATH_INFO", "")
        script = environ.get("SCRIPT_NAME", "")
        if path == base:
            target = _with_query(environ, script + prefix)
            return _redirect(environ, start_response, target, HTTPStatus.TEMPORARY_REDIRECT)
        if path.startswith(prefix):
            rest = path[len(prefix):]
            if not rest.startswith("/"):
                rest = "/" + rest
            inner = dict(environ)
            inner["PATH_INFO"] = rest
            inner["SCRIPT_NAME"] = script + base
            return subtree(inner, start_response)
        return fallback(environ, start_response)

    return app


def _clean_path(path: str) -> str:
    if not path:
        return "/"
    if not path.startswith("/"):
        path = "/" + path
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    if path.endswith("/") and cleaned != "/":
        cleaned += "/"
    return cleaned


def _not_found(environ: dict[str, Any], start_response: Callable[..., Any]) -> list[bytes]:
    start_response(
        "404 Not Found",
        [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("X-Content-Type-Options", "nosniff"),
        ],
    )
    return [b"404 page not found\n"]


class PathRouter:
    """Dispatches by path: exact matches first, then the longest '/'-ending subtree.

    Each path holds one application; registering a path twice is an error.
    """

    def __init__(self) -> None:
        self._routes: dict[str, WSGIApp] = {}

    @property
    def paths(self) -> list[str]:
        return sorted(self._routes)

    def register(self, path: str, app: Optional[WSGIApp]) -> None:
        """Mount ``app`` at ``path``; raises ValueError on bad or duplicated paths."""
        path = normalize_path(path)
        if app is None:
            raise ValueError(f"nil application for path {path}")
        if path in self._routes:
            raise ValueError(f"duplicated path handler: {path}")
        self._routes[path] = app

    def _match(self, path: str) -> Optional[WSGIApp]:
        exact = self._routes.get(path)
        if exact is not None:
            return exact
        best: Optional[str] = None
        for pattern in self._routes:
            if pattern.endswith("/") and path.startswith(pattern):
                if best is None or len(pattern) > len(best):
                    best = pattern
        return self._routes[best] if best is not None else None

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> Any:
        path = environ.get("PATH_INFO") or "/"
        script = environ.get("SCRIPT_NAME", "")
        cleaned = _clean_path(path)
        if cleaned != path:
            target = _with_query(environ, script + cleaned)
            return _redirect(environ, start_response, target, HTTPStatus.MOVED_PERMANENTLY)
        app = self._match(cleaned)
        if app is None:
            if not cleaned.endswith("/") and cleaned + "/" in self._routes:
                target = _with_query(environ, script + cleaned + "/")
                return _redirect(environ, start_response, target, HTTPStatus.MOVED_PERMANENTLY)
            return _not_found(environ, start_response)
        return app(environ, start_response)