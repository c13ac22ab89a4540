from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import importlib.metadata
import sys
from pathlib import Path

from .config import BridgeSettings
from .daemon import run as run_daemon
from .diagnostics import run_diagnostics
from .errors import ConfigurationError

_LOCK_FILE = None
DEFAULT_DIAGNOSTIC_DELAY = 10


def _acquire_daemon_lock(settings: BridgeSettings) -> Path:
    lock_path = Path(settings.store_path).with_suffix(".daemon.lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_fd = lock_path.open("w")
    try:
        fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError as exc:
        lock_fd.close()
        raise RuntimeError(
            f"Another turnbridge daemon appears to be running (lock: {lock_path})."
        ) from exc
    lock_fd.write(str(Path.cwd()))
    lock_fd.flush()
    global _LOCK_FILE
    _LOCK_FILE = lock_fd
    atexit.register(lock_fd.close)
    return lock_path


def _release_daemon_lock() -> None:
    global _LOCK_FILE
    if _LOCK_FILE is None:
        return
    _LOCK_FILE.close()
    _LOCK_FILE = None


def _get_version() -> str:
    """Get the version from package metadata."""
    try:
        return importlib.metadata.version("turnbridge")
    except importlib.metadata.PackageNotFoundError:
        return "0.1.0 (dev)"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="turnbridge: agent turn notifications and reply routing")
    parser.add_argument(
        "mode",
        choices=["daemon", "diagnostics", "version"],
        nargs="?",
        default="daemon",
    )
    parser.add_argument("--version", "-V", action="store_true", help="Show version and exit")
    parser.add_argument(
        "--delay",
        dest="delay",
        type=int,
        nargs="?",
        const=DEFAULT_DIAGNOSTIC_DELAY,
        default=0,
        metavar="N",
        help=f"With `diagnostics`, wait N seconds before probing (default {DEFAULT_DIAGNOSTIC_DELAY} when given bare)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.version or args.mode == "version":
        print(f"turnbridge {_get_version()}")
        return

    settings = BridgeSettings()

    if args.mode == "diagnostics":
        raise SystemExit(run_diagnostics(settings, delay_seconds=max(0, args.delay)))

    try:
        _acquire_daemon_lock(settings)
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(1) from exc
    try:
        asyncio.run(run_daemon())
    except ConfigurationError as exc:
        for problem in exc.problems:
            print(f"config error: {problem}", file=sys.stderr)
        raise SystemExit(2) from exc


if __name__ == "__main__":
    main()
