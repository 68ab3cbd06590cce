"""A plain-text overview page built from other read-only WSGI applications.

Each section calls its source application with a synthetic GET request,
captures the text it produces and indents it under a section header.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence
from wsgiref.util import setup_testing_defaults

from opskit.chain import WSGIApp

REPORT_PROVIDED_MAX_BYTES = 256 << 10

_SECTION_PREFIX = "=== "
_SECTION_SUFFIX = " ===\n"
_INDENT = "| "
_REPORT_HOST = "admin.report.invalid"


@dataclass(frozen=True)
class ReportSource:
    """A read endpoint that can feed a report section."""

    path: str = ""
    app: Optional[WSGIApp] = None

    @property
    def enabled(self) -> bool:
        return self.app is not None


@dataclass(frozen=True)
class ReportSection:
    """A named report section; ``limit`` caps its captured bytes (0 = no cap)."""

    name: str
    source: ReportSource
    limit: int = 0


def _status_code(status: str) -> int:
    return int(status.split(" ", 1)[0])


@dataclass
class TextCapture:
    """Collects the status and body of a WSGI call, keeping at most ``limit`` bytes."""

    limit: int = 0
    status: int = 0
    headers: list = field(default_factory=list)
    truncated: bool = False
    _buffer: bytearray = field(default_factory=bytearray, repr=False)

    @property
    def data(self) -> bytes:
        return bytes(self._buffer)

    def start_response(
        self, status: str, headers: Iterable[tuple[str, str]], exc_info: Any = None
    ) -> Callable[[bytes], int]:
        """Record the status; the first one wins unless an error replaces it."""
        if self.status == 0 or exc_info is not None:
            self.status = _status_code(status)
            self.headers = list(headers)
        return self.write

    def write(self, data: bytes) -> int:
        """Buffer ``data`` up to the limit; the excess is dropped but counted as written."""
        if self.status == 0:
            self.status = 200
        if self.limit <= 0:
            self._buffer.extend(data)
            return len(data)
        remain = self.limit - len(self._buffer)
        if remain <= 0:
            self.truncated = True
            return len(data)
        if len(data) <= remain:
            self._buffer.extend(data)
            return len(data)
        self._buffer.extend(data[:remain])
        self.truncated = True
        return len(data)


def append_indented(text: str, prefix: str) -> str:
    """Prefix every line of ``text``; no prefix follows a final newline."""
    if not text or not prefix:
        return text
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
        return "".join(f"{prefix}{line}\n" for line in lines)
    return "\n".join(f"{prefix}{line}" for line in lines)


def call_app_captured(source: ReportSource, limit: int = 0) -> tuple[int, str, bool]:
    """GET ``source.path`` from ``source.app`` and return (status, text, truncated)."""
    if source.app is None:
        return 500, "nil handler\n", False
    environ: dict[str, Any] = {
        "REQUEST_METHOD": "GET",
        "PATH_INFO": source.path or "/",
        "QUERY_STRING": "",
        "HTTP_HOST": _REPORT_HOST,
        "SERVER_NAME": _REPORT_HOST,
        "SERVER_PORT": "80",
    }
    setup_testing_defaults(environ)
    capture = TextCapture(limit=limit)
    result = source.app(environ, capture.start_response)
    try:
        for chunk in result:
            capture.write(chunk)
    finally:
        close = getattr(result, "close", None)
        if close is not None:
            close()
    status = capture.status or 200
    return status, capture.data.decode("utf-8", errors="replace"), capture.truncated


def _rfc3339_nano(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    if moment.microsecond:
        text += "." + f"{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset()
    if not offset:
        return text + "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    hours, minutes = divmod(abs(total) // 60, 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


def render_report(
    sections: Sequence[ReportSection], now: Optional[datetime] = None
) -> tuple[bool, str]:
    """Render all sections; returns whether every section answered with 2xx, and the text."""
    moment = now if now is not None else datetime.now().astimezone()
    ok = True
    parts: list[str] = []
    for section in sections:
        parts.append(f"\n{_SECTION_PREFIX}{section.name}{_SECTION_SUFFIX}")
        if section.name == "provided":
            parts.append(
                f"{_INDENT}note: below are user-provided snapshots (not built-in report sections)\n"
            )
        code, text, truncated = call_app_captured(section.source, section.limit)
        if not 200 <= code < 300:
            ok = False
            parts.append(f"{_INDENT}error: status {code}\n")
        if not text:
            parts.append(f"{_INDENT}(empty)\n")
        else:
            parts.append(append_indented(text, _INDENT))
            if not text.endswith("\n"):
                parts.append("\n")
        if truncated:
            parts.append(f"{_INDENT}(truncated)\n")

    names = [section.name for section in sections]
    header = [
        "ok\n" if ok else "error: one or more sections failed\n",
        f"generated_at: {_rfc3339_nano(moment)}\n",
        f"enabled sections: {', '.join(names) if names else '(none)'}\n",
        "\n",
    ]
    return ok, "".join(header) + "".join(parts)


def report_app(sections: Iterable[ReportSection]) -> WSGIApp:
    """Build the report WSGI application; sections without a source are left out."""
    active = tuple(section for section in sections if section.source.enabled)

    def app(environ: dict[str, Any], start_response: Callable[..., Any]) -> list[bytes]:
        method = environ.get("REQUEST_METHOD", "GET")
        if method not in ("GET", "HEAD"):
            start_response(
                "405 Method Not Allowed",
                [("Cache-Control", "no-store"), ("Allow", "GET, HEAD")],
            )
            return []
        headers = [
            ("Cache-Control", "no-store"),
            ("Content-Type", "text/plain; charset=utf-8"),
        ]
        if method == "HEAD":
            start_response("200 OK", headers)
            return []
        _, body = render_report(active)
        start_response("200 OK", headers)
        return [body.encode("utf-8")]

    return app