"""Per-signer nonce counters."""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from .errors import InvalidNonceError
from .signing import normalize_identity

__all__ = ["InMemoryNonceStore", "NonceStore"]


@runtime_checkable
class NonceStore(Protocol):
    """Monotonic counters keyed by signer identity."""

    def current(self, identity: str) -> int:
        """Return the next nonce expected from ``identity`` (0 if unseen)."""

    def compare_and_increment(self, identity: str, expected: int) -> int:
        """Atomically bump the counter if it equals ``expected``.

        Returns the new counter value and raises ``InvalidNonceError`` when
        the stored value differs.
        """


class InMemoryNonceStore:
    """Thread-safe in-process :class:`NonceStore`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}

    def current(self, identity: str) -> int:
        identity = normalize_identity(identity)
        with self._lock:
            return self._counters.get(identity, 0)

    def compare_and_increment(self, identity: str, expected: int) -> int:
        identity = normalize_identity(identity)
        with self._lock:
            stored = self._counters.get(identity, 0)
            if stored != expected:
                raise InvalidNonceError(identity, stored, expected)
            self._counters[identity] = stored + 1
            return stored + 1

    def snapshot(self) -> dict[str, int]:
        """Return a copy of all counters touched so far."""

        with self._lock:
            return dict(self._counters)
