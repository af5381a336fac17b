from __future__ import annotations

import enum
import logging
import queue
import threading
import types
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, Mapping

from settlewatch.config import WatchEntry, canonical_path
from settlewatch.debounce import Clock, DebounceFilter
from settlewatch.gate import DedupGate
from settlewatch.notify import (
    Notification,
    NotificationSource,
    NotificationStream,
    Operation,
    SourceFactory,
)
from settlewatch.runner import CommandError, CommandRunner, run_command
from settlewatch.stable import SettleResult, StabilityPolicy, StatProvider, settle

log = logging.getLogger(__name__)

ACCEPTED_OPERATIONS = frozenset({Operation.WRITE, Operation.CREATE, Operation.RENAME})

# How long the router loop blocks on the event queue before rechecking
# cancellation and the error queue.
_POLL_SECONDS = 0.2


class RouteResult(enum.Enum):
    UNKNOWN_PATH = "unknown_path"
    IGNORED_OPERATION = "ignored_operation"
    BUSY = "busy"
    DEBOUNCED = "debounced"
    DISPATCHED = "dispatched"
    CLOSED = "closed"


class SessionState(enum.Enum):
    NEW = "new"
    RUNNING = "running"
    STOPPED = "stopped"


def build_command_map(entries: Iterable[WatchEntry]) -> Mapping[Path, str]:
    out: dict[Path, str] = {}
    for entry in entries:
        out[entry.path] = entry.command
    return types.MappingProxyType(out)


class WatchSession:
    """
    One generation of the event-routing machinery.

    Owns the command map, the debounce and dedup state, the router loop
    thread and the worker pool for probe-and-execute handlers. `stop()`
    joins all of them; nothing outlives it.
    """

    def __init__(
        self,
        entries: Iterable[WatchEntry],
        *,
        policy: StabilityPolicy | None = None,
        debounce_seconds: float = 3.0,
        source_factory: SourceFactory | None = None,
        runner: CommandRunner | None = None,
        stat_provider: StatProvider | None = None,
        clock: Clock | None = None,
        name: str = "session",
    ) -> None:
        self.name = name
        self.commands = build_command_map(entries)
        self.policy = policy or StabilityPolicy()
        self.debounce = DebounceFilter(window=debounce_seconds, clock=clock)
        self.gate = DedupGate()
        self._source_factory: SourceFactory = source_factory or NotificationSource
        self._runner: CommandRunner = runner or run_command
        self._stat_provider = stat_provider
        self._cancelled = threading.Event()
        self._source: NotificationStream | None = None
        self._loop: threading.Thread | None = None
        self._workers = ThreadPoolExecutor(
            max_workers=max(4, len(self.commands)),
            thread_name_prefix=f"settlewatch-{name}",
        )
        self._state = SessionState.NEW
        self._state_lock = threading.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def directories(self) -> list[Path]:
        seen: dict[Path, None] = {}
        for path in self.commands:
            seen.setdefault(path.parent, None)
        return list(seen)

    def start(self) -> None:
        with self._state_lock:
            if self._state is not SessionState.NEW:
                raise RuntimeError(f"Session {self.name} already {self._state.value}")
            self._state = SessionState.RUNNING

        source = self._source_factory()
        try:
            source.start()
            for directory in self.directories():
                source.add_watch(directory)
                log.info("Watching directory: %s", directory)
        except BaseException:
            source.close()
            self._workers.shutdown(wait=True)
            with self._state_lock:
                self._state = SessionState.STOPPED
            raise

        self._source = source
        self._loop = threading.Thread(
            target=self._run_loop,
            args=(source,),
            name=f"settlewatch-{self.name}-router",
            daemon=True,
        )
        self._loop.start()

    def stop(self) -> None:
        """Cancel, close the source, and join the loop and every handler."""
        with self._state_lock:
            if self._state is SessionState.STOPPED:
                return
            self._state = SessionState.STOPPED

        self._cancelled.set()
        if self._source is not None:
            self._source.close()
        if self._loop is not None:
            self._loop.join()
        self._workers.shutdown(wait=True)
        self.debounce.clear()
        log.debug("Session %s stopped", self.name)

    def route(self, notification: Notification) -> RouteResult:
        path = canonical_path(notification.path)
        command = self.commands.get(path)
        if command is None:
            return RouteResult.UNKNOWN_PATH

        if notification.operation not in ACCEPTED_OPERATIONS:
            return RouteResult.IGNORED_OPERATION

        if not self.gate.try_reserve(path):
            log.debug("Already handling %s; dropping %s", path, notification.operation.value)
            return RouteResult.BUSY

        if not self.debounce.should_handle(path):
            self.gate.release(path)
            log.debug("Debounced %s for %s", notification.operation.value, path)
            return RouteResult.DEBOUNCED

        try:
            self._workers.submit(self._handle, path, command)
        except RuntimeError:
            # Pool already shut down: the session is stopping.
            self.gate.release(path)
            return RouteResult.CLOSED
        return RouteResult.DISPATCHED

    def _handle(self, path: Path, command: str) -> None:
        try:
            log.info("Change detected, waiting for file to settle: %s", path)
            result = settle(
                path,
                self.policy,
                stat_provider=self._stat_provider,
                sleep=self._cancelled.wait,
                on_retry=lambda: log.info("File not stable yet, retrying after cooldown: %s", path),
            )
            if result is SettleResult.CANCELLED:
                log.info("Session stopping; abandoning pending change: %s", path)
                return
            if not result.settled:
                log.info("File never settled, skipping: %s", path)
                return

            if result is SettleResult.STABLE_AFTER_RETRY:
                log.info("File stable after retry, running command: %s", command)
            else:
                log.info("File stable, running command: %s", command)
            try:
                outcome = self._runner(command)
            except CommandError as e:
                log.error("Command failed for %s: %s (%s)", path, e.command, e)
                return
            log.info("Command finished in %.1fs: %s", outcome.duration_seconds, command)
        except Exception:
            log.exception("Handler crashed for %s", path)
        finally:
            self.gate.release(path)

    def _drain_errors(self, source: NotificationStream) -> None:
        while True:
            try:
                err = source.errors.get_nowait()
            except queue.Empty:
                return
            if err is not None:
                log.warning("Notification error: %s", err)

    def _run_loop(self, source: NotificationStream) -> None:
        while not self._cancelled.is_set():
            self._drain_errors(source)
            try:
                item = source.events.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            if item is None:
                break
            try:
                self.route(item)
            except Exception:
                log.exception("Failed to route notification for %s", item.path)
        log.debug("Router loop for session %s exited", self.name)
