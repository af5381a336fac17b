from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from typing import Callable

log = logging.getLogger(__name__)


class CommandError(RuntimeError):
    def __init__(self, message: str, *, command: str) -> None:
        super().__init__(message)
        self.command = command


class CommandStartError(CommandError):
    pass


class CommandTimeoutError(CommandError):
    pass


class CommandFailedError(CommandError):
    def __init__(self, message: str, *, command: str, returncode: int) -> None:
        super().__init__(message, command=command)
        self.returncode = returncode


@dataclass(frozen=True)
class CommandResult:
    command: str
    returncode: int
    duration_seconds: float


CommandRunner = Callable[[str], CommandResult]


def run_command(command: str, *, timeout: float | None = None) -> CommandResult:
    """
    Run `command` through the system shell with inherited stdout/stderr.

    Output goes straight to the operator's terminal; nothing is captured.
    """
    log.info("Running command: %s", command)
    started = time.monotonic()
    try:
        proc = subprocess.run(command, shell=True, timeout=timeout, check=False)
    except subprocess.TimeoutExpired as e:
        raise CommandTimeoutError(
            f"Command timed out after {timeout}s (increase commands.timeout_seconds in config)",
            command=command,
        ) from e
    except OSError as e:
        raise CommandStartError(f"Command could not be started: {e}", command=command) from e

    duration = time.monotonic() - started
    if proc.returncode != 0:
        raise CommandFailedError(
            f"Command exited with status {proc.returncode}",
            command=command,
            returncode=proc.returncode,
        )
    return CommandResult(command=command, returncode=proc.returncode, duration_seconds=duration)
