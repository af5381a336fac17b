from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable

Clock = Callable[[], float]


class DebounceFilter:
    """
    Leading-edge cooldown per path: the first event is accepted, later ones
    are dropped until `window` seconds have passed since the last accepted one.
    """

    def __init__(self, *, window: float, clock: Clock | None = None) -> None:
        self._window = window
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._last: dict[Path, float] = {}

    @property
    def window(self) -> float:
        return self._window

    def should_handle(self, path: Path, now: float | None = None) -> bool:
        t = self._clock() if now is None else float(now)
        with self._lock:
            last = self._last.get(path)
            if last is not None and (t - last) <= self._window:
                return False
            self._last[path] = t
            return True

    def last_accepted(self, path: Path) -> float | None:
        with self._lock:
            return self._last.get(path)

    def clear(self) -> None:
        with self._lock:
            self._last.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last)
