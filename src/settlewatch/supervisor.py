from __future__ import annotations

import functools
import logging
import queue
import signal
import threading
import time
from pathlib import Path
from typing import Callable

from settlewatch.config import AppConfig, ConfigError, canonical_path, load_config
from settlewatch.debounce import Clock
from settlewatch.notify import (
    Notification,
    NotificationSource,
    NotificationStream,
    SourceFactory,
    WatchRegistrationError,
)
from settlewatch.router import ACCEPTED_OPERATIONS, WatchSession
from settlewatch.runner import run_command
from settlewatch.stable import StabilityPolicy

log = logging.getLogger(__name__)

ConfigLoader = Callable[[Path], AppConfig]
SessionFactory = Callable[[AppConfig, int], WatchSession]


def session_from_config(
    cfg: AppConfig,
    generation: int,
    *,
    source_factory: SourceFactory | None = None,
) -> WatchSession:
    return WatchSession(
        cfg.watches,
        policy=StabilityPolicy(
            interval=cfg.stability.interval_seconds,
            first_attempts=cfg.stability.first_attempts,
            retry_attempts=cfg.stability.retry_attempts,
            retry_cooldown=cfg.stability.retry_cooldown_seconds,
        ),
        debounce_seconds=cfg.debounce.event_seconds,
        source_factory=source_factory,
        runner=functools.partial(run_command, timeout=cfg.commands.timeout_seconds),
        name=f"gen{generation}",
    )


class ConfigSupervisor:
    """
    Owns the single live WatchSession and restarts it when the config file changes.

    Config notifications arm a trailing deadline; the reload runs once the file
    has been quiet for `debounce.reload_seconds`. Reloads happen on the
    supervisor's own thread, one at a time, and the old session is fully
    joined before the new one starts.
    """

    def __init__(
        self,
        config_path: Path,
        *,
        loader: ConfigLoader | None = None,
        session_factory: SessionFactory | None = None,
        source_factory: SourceFactory | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config_path = canonical_path(config_path)
        self._loader: ConfigLoader = loader or load_config
        self._session_factory: SessionFactory = session_factory or session_from_config
        self._source_factory: SourceFactory = source_factory or NotificationSource
        self._clock = clock or time.monotonic
        self._cfg: AppConfig | None = None
        self._session: WatchSession | None = None
        self._source: NotificationStream | None = None
        self._generation = 0
        self._reload_due: float | None = None
        self._reloads = 0
        self._stop = threading.Event()

    @property
    def config(self) -> AppConfig | None:
        return self._cfg

    @property
    def session(self) -> WatchSession | None:
        return self._session

    @property
    def reload_count(self) -> int:
        return self._reloads

    @property
    def reload_pending(self) -> bool:
        return self._reload_due is not None

    def _reload_window(self) -> float:
        return self._cfg.debounce.reload_seconds if self._cfg else 2.0

    def _start_session(self, cfg: AppConfig) -> WatchSession:
        self._generation += 1
        session = self._session_factory(cfg, self._generation)
        session.start()
        log.info("Watching %d file(s) (generation %d)", len(session.commands), self._generation)
        return session

    def start(self) -> None:
        """Load config and start the first session. Errors here are fatal to the caller."""
        cfg = self._loader(self._config_path)
        self._cfg = cfg
        self._session = self._start_session(cfg)

        source = self._source_factory()
        try:
            source.start()
            source.add_watch(self._config_path.parent)
        except BaseException:
            source.close()
            self._session.stop()
            self._session = None
            raise
        self._source = source
        log.info("Watching config file for changes: %s", self._config_path)

    def observe(self, notification: Notification, now: float | None = None) -> bool:
        if canonical_path(notification.path) != self._config_path:
            return False
        if notification.operation not in ACCEPTED_OPERATIONS:
            return False
        t = self._clock() if now is None else float(now)
        if self._reload_due is None:
            log.info("Config file changed, reloading once it settles: %s", self._config_path)
        self._reload_due = t + self._reload_window()
        return True

    def reload_if_due(self, now: float | None = None) -> bool:
        if self._reload_due is None:
            return False
        t = self._clock() if now is None else float(now)
        if t < self._reload_due:
            return False
        self._reload_due = None
        return self.reload()

    def reload(self) -> bool:
        """
        Replace the live session with one built from the current config file.

        Returns False (and keeps the running session) when the new config is
        unusable. Raises WatchRegistrationError only when neither the new nor
        the previous config can be watched.
        """
        try:
            new_cfg = self._loader(self._config_path)
        except ConfigError as e:
            log.error("Config reload failed, keeping current watches: %s", e)
            return False

        old_cfg = self._cfg
        if self._session is not None:
            log.info("Stopping %s before reload", self._session.name)
            self._session.stop()
            self._session = None

        try:
            self._session = self._start_session(new_cfg)
        except WatchRegistrationError as e:
            log.error("New config cannot be watched: %s", e)
            if old_cfg is None:
                raise
            log.warning("Restoring previous watches")
            self._session = self._start_session(old_cfg)
            return False

        self._cfg = new_cfg
        self._reloads += 1
        log.info("Config reloaded: %s", self._config_path)
        return True

    def _drain_errors(self, source: NotificationStream) -> None:
        while True:
            try:
                err = source.errors.get_nowait()
            except queue.Empty:
                return
            if err is not None:
                log.warning("Config notification error: %s", err)

    def poll_once(self, timeout: float = 0.5) -> bool:
        """One supervisor step. Returns whether a reload happened."""
        source = self._source
        if source is not None:
            self._drain_errors(source)
            wait = timeout
            if self._reload_due is not None:
                wait = max(0.0, min(timeout, self._reload_due - self._clock()))
            try:
                item = source.events.get(timeout=wait) if wait > 0 else source.events.get_nowait()
            except queue.Empty:
                item = None
            if item is not None:
                self.observe(item)
        return self.reload_if_due()

    def stop(self) -> None:
        self._stop.set()

    def run_forever(self) -> None:
        signal.signal(signal.SIGTERM, lambda *_: self.stop())
        signal.signal(signal.SIGINT, lambda *_: self.stop())

        if self._session is None:
            self.start()
        try:
            while not self._stop.is_set():
                self.poll_once()
        finally:
            self.close()
        log.info("Supervisor stopped")

    def close(self) -> None:
        if self._source is not None:
            self._source.close()
            self._source = None
        if self._session is not None:
            self._session.stop()
            self._session = None
