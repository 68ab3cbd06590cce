"""Guarded reading and draining of response bodies."""

from __future__ import annotations

from typing import BinaryIO, Optional

_CHUNK = 64 * 1024


class BodyTooLargeError(Exception):
    """The response body is larger than the allowed limit."""

    def __init__(self, message: str = "response body too large") -> None:
        super().__init__(message)


def _read_up_to(body: BinaryIO, count: int) -> bytes:
    parts = []
    remaining = count
    while remaining > 0:
        chunk = body.read(min(remaining, _CHUNK))
        if not chunk:
            break
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


def read_all_and_close_limit(body: Optional[BinaryIO], limit: int) -> Optional[bytes]:
    """Read at most ``limit`` bytes from ``body`` and always close it.

    Raises BodyTooLargeError when the body holds more than ``limit`` bytes.
    A negative limit counts as zero. A ``None`` body gives ``None``.
    """
    if body is None:
        return None
    limit = max(limit, 0)
    try:
        data = _read_up_to(body, limit + 1)
    finally:
        body.close()
    if len(data) > limit:
        raise BodyTooLargeError()
    return data


def drain_and_close(body: Optional[BinaryIO], max_bytes: int) -> None:
    """Discard up to ``max_bytes`` from ``body`` and then close it.

    Draining helps connection reuse. With ``max_bytes <= 0`` the body is only
    closed. A read error takes precedence over a close error.
    """
    if body is None:
        return
    read_error: Optional[BaseException] = None
    if max_bytes > 0:
        try:
            remaining = max_bytes
            while remaining > 0:
                chunk = body.read(min(remaining, _CHUNK))
                if not chunk:
                    break
                remaining -= len(chunk)
        except Exception as exc:
            read_error = exc
    try:
        body.close()
    except Exception:
        if read_error is None:
            raise
    if read_error is not None:
        raise read_error