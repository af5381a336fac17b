from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from settlewatch.config import AppConfig, ConfigError, canonical_path, load_config
from settlewatch.logging_setup import setup_logging
from settlewatch.notify import WatchRegistrationError
from settlewatch.stable import is_stable
from settlewatch.supervisor import ConfigSupervisor

log = logging.getLogger(__name__)

_GLOBAL_FLAGS = {"-v", "--verbose"}


def _normalize_argv(argv: list[str]) -> list[str]:
    """
    Allow global flags (like --config / -v) to appear *after* the subcommand.
    """
    global_parts: list[str] = []
    rest: list[str] = []

    i = 0
    while i < len(argv):
        arg = argv[i]

        if arg in _GLOBAL_FLAGS:
            global_parts.append(arg)
            i += 1
            continue

        if arg == "--config":
            global_parts.append(arg)
            if i + 1 < len(argv):
                global_parts.append(argv[i + 1])
                i += 2
            else:
                i += 1
            continue

        if arg.startswith("--config="):
            global_parts.append(arg)
            i += 1
            continue

        rest.append(arg)
        i += 1

    return global_parts + rest


def _load(cfg_path: str | None, *, verbose: bool) -> AppConfig:
    cfg = load_config(Path(cfg_path).expanduser() if cfg_path else None)
    setup_logging(cfg.logging.file, verbose=verbose)
    return cfg


def cmd_watch(args: argparse.Namespace) -> int:
    cfg = _load(args.config, verbose=args.verbose)
    supervisor = ConfigSupervisor(cfg.config_path)
    supervisor.run_forever()
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    cfg = _load(args.config, verbose=args.verbose)
    print(f"config: {cfg.config_path}")
    for entry in cfg.watches:
        marker = "" if entry.path.parent.is_dir() else "  (directory missing)"
        print(f"{entry.path} -> {entry.command}{marker}")
    return 0


def cmd_probe(args: argparse.Namespace) -> int:
    setup_logging(None, verbose=args.verbose)
    path = canonical_path(Path(args.path).expanduser())
    stable = is_stable(path, interval=args.interval, attempts=args.attempts)
    print("stable" if stable else "unstable")
    return 0 if stable else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="settlewatch")
    p.add_argument("--config", help="Path to the watch config (YAML or JSON; default: auto)")
    p.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    sub = p.add_subparsers(dest="cmd", required=True)

    w = sub.add_parser("watch", help="Run configured commands when watched files settle")
    w.set_defaults(func=cmd_watch)

    c = sub.add_parser("check", help="Validate the config and list watched files")
    c.set_defaults(func=cmd_check)

    pr = sub.add_parser("probe", help="Check once whether a file has stopped changing")
    pr.add_argument("path", help="File to probe")
    pr.add_argument("--attempts", type=int, default=3, help="Number of samples (default: 3)")
    pr.add_argument("--interval", type=float, default=1.0, help="Seconds between samples (default: 1)")
    pr.set_defaults(func=cmd_probe)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    raw = list(sys.argv[1:] if argv is None else argv)
    args = parser.parse_args(_normalize_argv(raw))
    try:
        return int(args.func(args))
    except ConfigError as e:
        print(f"settlewatch: {e}", file=sys.stderr)
        return 2
    except WatchRegistrationError as e:
        log.error("%s", e)
        return 1
