"""
Logging configuration — one setup call per devbox invocation.

main.py resolves the console level and calls ``setup_logging`` before
any command runs; modules log through ``logging.getLogger(__name__)``.

Console level precedence:
    --debug / --verbose / --quiet  >  DEVBOX_LOG_LEVEL  >  WARNING

DEVBOX_LOG_FILE adds a file log, at DEVBOX_LOG_FILE_LEVEL or the
console level. Provisioning runs are mostly unattended, so the file
always uses the detailed format.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

_DETAILED = ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S")

# Console format per level threshold, most verbose first.
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, *_DETAILED),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
)

_FILE_FORMAT = (_DETAILED[0], "%Y-%m-%d %H:%M:%S")


def resolve_level(*, debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Pick the console level from CLI flags, then DEVBOX_LOG_LEVEL."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get("DEVBOX_LOG_LEVEL", "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Install the console handler and, when asked, a file handler.

    Existing root handlers are replaced, so calling this twice does
    not duplicate output.

    Args:
        level: Console level name.
        log_file: Optional log file path. ``~`` is expanded and parent
            dirs are created.
        log_file_level: Level for the file; defaults to ``level``.
    """
    console_level = _parse_level(level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(_console_formatter(console_level))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(*_FILE_FORMAT))
        root.addHandler(fh)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)
    logging.raiseExceptions = False


def _console_formatter(level: int) -> logging.Formatter:
    for threshold, fmt, datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            return logging.Formatter(fmt, datefmt=datefmt)
    return logging.Formatter("%(message)s")


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value; unknown names mean WARNING."""
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) and level else logging.WARNING
