"""Hot-updatable token set for access guards."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class _Snapshot:
    allow_all: bool = False
    tokens: tuple[str, ...] = ()


def constant_time_equal(a: str, b: str) -> bool:
    """Compare two strings without leaking where they differ.

    Lengths are compared first; token length is not treated as secret.
    """
    left = a.encode("utf-8")
    right = b.encode("utf-8")
    if len(left) != len(right):
        return False
    return hmac.compare_digest(left, right)


class AtomicTokenSet:
    """An updatable token set, denying everything until tokens are set.

    Each update swaps in a whole new immutable snapshot, so readers never see a
    partially applied change.
    """

    def __init__(self) -> None:
        self._snapshot = _Snapshot()

    def update(self, tokens: Optional[Iterable[str]]) -> None:
        """Replace the tokens; blank entries are dropped and ``None`` clears the set."""
        cleaned = tuple(t.strip() for t in tokens or () if t.strip())
        self._snapshot = _Snapshot(tokens=cleaned)

    def allow_all(self) -> None:
        """Accept every token."""
        self._snapshot = _Snapshot(allow_all=True)

    def contains(self, token: str) -> bool:
        """Report whether ``token`` is accepted, scanning every entry."""
        snap = self._snapshot
        if snap.allow_all:
            return True
        matched = False
        for candidate in snap.tokens:
            if constant_time_equal(token, candidate):
                matched = True
        return matched

    def is_empty(self) -> bool:
        """True when the set neither allows all nor holds any token."""
        snap = self._snapshot
        return not snap.allow_all and not snap.tokens

    def __contains__(self, token: str) -> bool:
        return self.contains(token)