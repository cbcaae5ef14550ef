"""
Logging configuration — central setup for the CLI.

main.py calls ``setup_logging`` once, before any command runs; module
loggers created with ``logging.getLogger(__name__)`` need nothing else.

Console level, highest precedence first:
    --debug / --verbose / --quiet  >  DEPLOYER_LOG_LEVEL  >  WARNING

DEPLOYER_LOG_FILE adds a file handler at DEPLOYER_LOG_FILE_LEVEL (or the
console level). Tool stdout/stderr is logged at DEBUG, so a DEBUG log
file holds the full output of every plan, apply and playbook run.
"""

from __future__ import annotations

import logging
import os
import sys

LEVEL_ENV = "DEPLOYER_LOG_LEVEL"
FILE_ENV = "DEPLOYER_LOG_FILE"
FILE_LEVEL_ENV = "DEPLOYER_LOG_FILE_LEVEL"

DEFAULT_LEVEL = "WARNING"

# create_many/destroy_many interleave several environments' records, and
# the pool's thread name is what tells them apart
_THREAD = "%(threadName)s"

# (max level, format, datefmt): first row whose level covers the console level wins
_CONSOLE_FORMATS = (
    (logging.DEBUG, f"%(asctime)s %(levelname)-5s {_THREAD} %(name)s:%(lineno)d %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
)

_FILE_FORMAT = f"%(asctime)s %(levelname)-5s {_THREAD} %(name)s:%(lineno)d %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


def resolve_level(flag_level: str | None = None) -> str:
    """Pick the console level: explicit flag, then env var, then WARNING."""
    return flag_level or os.environ.get(LEVEL_ENV) or DEFAULT_LEVEL


def setup_logging(
    level: str = DEFAULT_LEVEL,
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root logger's handlers with a console (and optional file) handler.

    Args:
        level: Console level name. Unknown names mean WARNING.
        log_file: Log file path. Defaults to DEPLOYER_LOG_FILE.
        log_file_level: File level name. Defaults to DEPLOYER_LOG_FILE_LEVEL,
            then ``level``.
    """
    console_level = _parse_level(level)
    handlers = [_console_handler(console_level)]

    log_file = log_file or os.environ.get(FILE_ENV)
    if log_file:
        file_level_name = log_file_level or os.environ.get(FILE_LEVEL_ENV)
        file_level = _parse_level(file_level_name) if file_level_name else console_level
        handlers.append(_file_handler(log_file, file_level))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    # Root must let through whatever the chattiest handler wants
    root.setLevel(min(h.level for h in handlers))
    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = next((f, d) for limit, f, d in _CONSOLE_FORMATS if level <= limit)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def _parse_level(level: str | None) -> int:
    numeric = logging.getLevelName(level.upper()) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING
