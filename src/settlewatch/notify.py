"""Directory notifications from watchdog, reduced to `{path, operation}` items."""

from __future__ import annotations

import enum
import logging
import os
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

log = logging.getLogger(__name__)


class WatchRegistrationError(RuntimeError):
    def __init__(self, directory: Path, reason: str) -> None:
        super().__init__(f"Cannot watch directory {directory}: {reason}")
        self.directory = directory
        self.reason = reason


class Operation(enum.Enum):
    WRITE = "write"
    CREATE = "create"
    RENAME = "rename"
    REMOVE = "remove"
    CLOSE_WRITE = "close_write"
    OTHER = "other"


@dataclass(frozen=True)
class Notification:
    path: Path
    operation: Operation


class NotificationStream(Protocol):
    """What a session needs from a notification capability."""

    events: queue.Queue[Notification | None]
    errors: queue.Queue[BaseException | None]

    def start(self) -> None: ...

    def add_watch(self, directory: Path) -> None: ...

    def close(self) -> None: ...


SourceFactory = Callable[[], NotificationStream]


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return os.fsdecode(path)
    return path


def translate_event(event: FileSystemEvent) -> list[Notification]:
    """Map one watchdog event to zero or more notifications."""
    if event.is_directory:
        return []

    src = Path(_decode(event.src_path))
    kind = event.event_type
    if kind == EVENT_TYPE_MODIFIED:
        return [Notification(src, Operation.WRITE)]
    if kind == EVENT_TYPE_CREATED:
        return [Notification(src, Operation.CREATE)]
    if kind == EVENT_TYPE_DELETED:
        return [Notification(src, Operation.REMOVE)]
    if kind == EVENT_TYPE_CLOSED:
        return [Notification(src, Operation.CLOSE_WRITE)]
    if kind == EVENT_TYPE_MOVED:
        # Editors that save via "write temp, rename over target" show up here;
        # the target side is what a configured path matches.
        out = [Notification(src, Operation.RENAME)]
        dest = getattr(event, "dest_path", "")
        if dest:
            out.append(Notification(Path(_decode(dest)), Operation.CREATE))
        return out
    return [Notification(src, Operation.OTHER)]


class _QueueingHandler(FileSystemEventHandler):
    def __init__(self, source: NotificationSource) -> None:
        super().__init__()
        self._source = source

    def on_any_event(self, event: FileSystemEvent) -> None:
        try:
            notifications = translate_event(event)
        except Exception as e:
            self._source.errors.put(e)
            return
        for n in notifications:
            self._source.events.put(n)


class NotificationSource:
    """
    Non-recursive watchdog observer feeding two queues.

    `None` on a queue means the source has been closed.
    """

    def __init__(self, observer_factory: Callable[[], Observer] | None = None) -> None:
        self.events: queue.Queue[Notification | None] = queue.Queue()
        self.errors: queue.Queue[BaseException | None] = queue.Queue()
        self._observer = (observer_factory or Observer)()
        self._handler = _QueueingHandler(self)
        self._watched: set[Path] = set()
        self._lock = threading.Lock()
        self._started = False
        self._closed = False

    def start(self) -> None:
        with self._lock:
            if self._started or self._closed:
                return
            self._observer.start()
            self._started = True

    def add_watch(self, directory: Path) -> None:
        """Watch `directory` (not its subdirectories); repeated calls are no-ops."""
        directory = Path(directory)
        with self._lock:
            if self._closed:
                raise WatchRegistrationError(directory, "notification source is closed")
            if directory in self._watched:
                return
            if not directory.exists():
                raise WatchRegistrationError(directory, "directory does not exist")
            if not directory.is_dir():
                raise WatchRegistrationError(directory, "not a directory")
            try:
                self._observer.schedule(self._handler, str(directory), recursive=False)
            except OSError as e:
                raise WatchRegistrationError(directory, str(e)) from e
            self._watched.add(directory)

    @property
    def watched(self) -> frozenset[Path]:
        with self._lock:
            return frozenset(self._watched)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            started = self._started

        if started:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            if self._observer.is_alive():
                log.warning("Notification observer did not stop within 5s")
        self.events.put(None)
        self.errors.put(None)
