from __future__ import annotations

import enum
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable


@dataclass(frozen=True)
class StatSnapshot:
    size: int
    mtime_ns: int


StatProvider = Callable[[Path], StatSnapshot]
# Returns True when the wait was interrupted and the probe should give up.
Sleeper = Callable[[float], bool]


def _default_stat_provider(path: Path) -> StatSnapshot:
    st = os.stat(path)
    return StatSnapshot(size=st.st_size, mtime_ns=st.st_mtime_ns)


def _default_sleep(seconds: float) -> bool:
    time.sleep(seconds)
    return False


@dataclass(frozen=True)
class StabilityPolicy:
    interval: float = 1.0
    first_attempts: int = 10
    retry_attempts: int = 3
    retry_cooldown: float = 1.0


class SettleResult(enum.Enum):
    STABLE = "stable"
    STABLE_AFTER_RETRY = "stable_after_retry"
    UNSTABLE = "unstable"
    CANCELLED = "cancelled"

    @property
    def settled(self) -> bool:
        return self in (SettleResult.STABLE, SettleResult.STABLE_AFTER_RETRY)


class _Interrupted(Exception):
    pass


def _probe(
    path: Path,
    *,
    interval: float,
    attempts: int,
    stat: StatProvider,
    sleep: Sleeper,
) -> bool:
    prior: StatSnapshot | None = None
    for i in range(max(1, attempts)):
        if i > 0 and sleep(interval):
            raise _Interrupted()
        try:
            snap = stat(path)
        except OSError:
            return False
        if prior is not None and snap != prior:
            return False
        prior = snap
    return True


def is_stable(
    path: Path,
    *,
    interval: float,
    attempts: int,
    stat_provider: StatProvider | None = None,
    sleep: Sleeper | None = None,
) -> bool:
    """
    Sample size and mtime `attempts` times, `interval` seconds apart.

    True only when every sample agrees. A missing or unreadable file, or an
    interrupted wait, is never stable.
    """
    try:
        return _probe(
            path,
            interval=interval,
            attempts=attempts,
            stat=stat_provider or _default_stat_provider,
            sleep=sleep or _default_sleep,
        )
    except _Interrupted:
        return False


def settle(
    path: Path,
    policy: StabilityPolicy,
    *,
    stat_provider: StatProvider | None = None,
    sleep: Sleeper | None = None,
    on_retry: Callable[[], None] | None = None,
) -> SettleResult:
    """
    Two-phase wait: a long probe, then after a cooldown a shorter confirmation probe.

    There is no third attempt; a later notification starts a fresh cycle.
    """
    stat = stat_provider or _default_stat_provider
    wait = sleep or _default_sleep
    try:
        if _probe(path, interval=policy.interval, attempts=policy.first_attempts, stat=stat, sleep=wait):
            return SettleResult.STABLE

        if on_retry is not None:
            on_retry()
        if policy.retry_cooldown > 0 and wait(policy.retry_cooldown):
            return SettleResult.CANCELLED

        if _probe(path, interval=policy.interval, attempts=policy.retry_attempts, stat=stat, sleep=wait):
            return SettleResult.STABLE_AFTER_RETRY
    except _Interrupted:
        return SettleResult.CANCELLED
    return SettleResult.UNSTABLE
