from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any


class ConfigError(RuntimeError):
    pass


def _load_yaml(path: Path) -> Any:
    if not path.exists():
        raise ConfigError(f"Config not found: {path}")

    try:
        import yaml  # type: ignore[import-not-found]
    except ImportError as e:
        raise ConfigError(
            "PyYAML is required to parse the config file. Install it with: pip install pyyaml"
        ) from e

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    # JSON is a subset of YAML, so legacy fileWatcher.json files load here too.
    try:
        return yaml.safe_load(text)
    except Exception as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)  # type: ignore[arg-type]
        else:
            out[k] = v
    return out


def _expand_path(value: str | None) -> Path | None:
    if value is None:
        return None
    return Path(os.path.expandvars(value)).expanduser()


def _optional_path(value: Any) -> Path | None:
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    return _expand_path(s)


def canonical_path(path: str | os.PathLike[str], *, base: Path | None = None) -> Path:
    """
    Absolute, resolved form of `path`, used as the key for every per-file map.

    Relative paths are anchored at `base` (or the current directory).
    """
    p = Path(path)
    if not p.is_absolute() and base is not None:
        p = base / p
    return p.resolve()


@dataclass(frozen=True)
class WatchEntry:
    path: Path
    command: str


@dataclass(frozen=True)
class StabilityConfig:
    interval_seconds: float
    first_attempts: int
    retry_attempts: int
    retry_cooldown_seconds: float


@dataclass(frozen=True)
class DebounceConfig:
    event_seconds: float
    reload_seconds: float


@dataclass(frozen=True)
class CommandsConfig:
    timeout_seconds: float | None


@dataclass(frozen=True)
class LoggingConfig:
    file: Path | None


@dataclass(frozen=True)
class AppConfig:
    watches: tuple[WatchEntry, ...]
    stability: StabilityConfig
    debounce: DebounceConfig
    commands: CommandsConfig
    logging: LoggingConfig
    config_path: Path


DEFAULT_CONFIG: dict[str, Any] = {
    "watches": [],
    "stability": {
        "interval_seconds": 1,
        "first_attempts": 10,
        "retry_attempts": 3,
        "retry_cooldown_seconds": 1,
    },
    "debounce": {
        "event_seconds": 3,
        "reload_seconds": 2,
    },
    "commands": {"timeout_seconds": 0},
    "logging": {"file": ""},
}

_DEFAULT_FILENAMES = ("settlewatch.yaml", "settlewatch.yml", "fileWatcher.json")


def default_config_path() -> Path:
    env = os.environ.get("SETTLEWATCH_CONFIG")
    if env:
        return Path(env).expanduser()

    for name in _DEFAULT_FILENAMES:
        cwd_config = Path.cwd() / name
        if cwd_config.exists():
            return cwd_config

    return Path("~/.config/settlewatch/config.yaml").expanduser()


def _number(section: str, key: str, value: Any, *, minimum: float = 0.0) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}") from e
    if out < minimum:
        raise ConfigError(f"{section}.{key} must be >= {minimum}, got {out}")
    return out


def _count(section: str, key: str, value: Any) -> int:
    try:
        out = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{section}.{key} must be an integer, got {value!r}") from e
    if out < 1:
        raise ConfigError(f"{section}.{key} must be >= 1, got {out}")
    return out


def _section(merged: dict[str, Any], name: str) -> dict[str, Any]:
    value = merged.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid config: '{name}' must be a mapping")
    return value


def _log_file(value: Any, *, base: Path) -> Path | None:
    path = _optional_path(value)
    if path is None:
        return None
    return canonical_path(path, base=base)


def _parse_watches(raw: Any, *, base: Path) -> tuple[WatchEntry, ...]:
    if not isinstance(raw, list):
        raise ConfigError("Invalid config: 'watches' must be a list of {file, command} records")

    entries: list[WatchEntry] = []
    seen: dict[Path, int] = {}
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ConfigError(f"Invalid watch entry #{i}: expected a mapping, got {type(item).__name__}")

        file_value = str(item.get("file") or "").strip()
        command = str(item.get("command") or "").strip()
        if not file_value:
            raise ConfigError(f"Invalid watch entry #{i}: 'file' is empty")
        if not command:
            raise ConfigError(f"Invalid watch entry #{i} ({file_value}): 'command' is empty")

        try:
            path = canonical_path(_expand_path(file_value) or Path(), base=base)
        except (OSError, RuntimeError) as e:
            raise ConfigError(f"Cannot resolve watch path {file_value!r}: {e}") from e

        if path in seen:
            raise ConfigError(f"Duplicate watch entry for {path} (entries #{seen[path]} and #{i})")
        seen[path] = i
        entries.append(WatchEntry(path=path, command=command))

    if not entries:
        raise ConfigError("Invalid config: no watch entries configured")
    return tuple(entries)


def load_config(path: Path | None = None) -> AppConfig:
    config_path = (path or default_config_path()).expanduser()
    data = _load_yaml(config_path)

    if data is None:
        data = {}
    if isinstance(data, list):
        data = {"watches": data}
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config: expected a list or a mapping at the top level of {config_path}")

    merged = _deep_merge(DEFAULT_CONFIG, data)
    base = config_path.resolve().parent

    stability = _section(merged, "stability")
    debounce = _section(merged, "debounce")
    commands = _section(merged, "commands")
    logging_cfg = _section(merged, "logging")

    interval = _number("stability", "interval_seconds", stability.get("interval_seconds", 1))
    if interval <= 0:
        raise ConfigError("stability.interval_seconds must be > 0")

    timeout = _number("commands", "timeout_seconds", commands.get("timeout_seconds", 0))

    return AppConfig(
        watches=_parse_watches(merged.get("watches"), base=base),
        stability=StabilityConfig(
            interval_seconds=interval,
            first_attempts=_count("stability", "first_attempts", stability.get("first_attempts", 10)),
            retry_attempts=_count("stability", "retry_attempts", stability.get("retry_attempts", 3)),
            retry_cooldown_seconds=_number(
                "stability", "retry_cooldown_seconds", stability.get("retry_cooldown_seconds", 1)
            ),
        ),
        debounce=DebounceConfig(
            event_seconds=_number("debounce", "event_seconds", debounce.get("event_seconds", 3)),
            reload_seconds=_number("debounce", "reload_seconds", debounce.get("reload_seconds", 2)),
        ),
        commands=CommandsConfig(timeout_seconds=timeout or None),
        logging=LoggingConfig(file=_log_file(logging_cfg.get("file"), base=base)),
        config_path=config_path.resolve(),
    )
