from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class DedupGate:
    """
    Per-path exclusive reservation.

    Between a successful `try_reserve(p)` and `release(p)` no other
    `try_reserve(p)` succeeds, whichever thread asks.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[Path] = set()

    def try_reserve(self, path: Path) -> bool:
        with self._lock:
            if path in self._active:
                return False
            self._active.add(path)
            return True

    def release(self, path: Path) -> None:
        with self._lock:
            self._active.discard(path)

    @contextmanager
    def reserved(self, path: Path) -> Iterator[bool]:
        """Yield whether the reservation was taken; release on exit if it was."""
        ok = self.try_reserve(path)
        try:
            yield ok
        finally:
            if ok:
                self.release(path)

    def snapshot(self) -> frozenset[Path]:
        with self._lock:
            return frozenset(self._active)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._active

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)
