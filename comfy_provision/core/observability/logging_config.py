"""
Logging configuration — set up once by the CLI entrypoint.

Every module does ``logger = logging.getLogger(__name__)`` and inherits
this config. A provisioning run is mostly watched live in a container
log, so the default level is INFO and each line carries a timestamp
and a severity tag.

Levels are resolved in precedence order:
    CLI flag  >  PROVISION_LOG_LEVEL env var  >  INFO (default)

--verbose is DEBUG for comfy-provision's own loggers; --debug also
lets pip's vendored libraries through.

Optional file output via PROVISION_LOG_FILE / PROVISION_LOG_FILE_LEVEL.
"""

from __future__ import annotations

import logging
import os
import sys

ENV_LOG_LEVEL = "PROVISION_LOG_LEVEL"
ENV_LOG_FILE = "PROVISION_LOG_FILE"
ENV_LOG_FILE_LEVEL = "PROVISION_LOG_FILE_LEVEL"

DEFAULT_LEVEL = "INFO"

# ── Format strings ──────────────────────────────────────────────

# ERROR and above (--quiet): just the message
_FMT_MINIMAL = "%(levelname)s: %(message)s"

# INFO / WARNING: what an operator tails
_FMT_CONSOLE = "%(asctime)s [%(levelname)s] %(message)s"
_DATEFMT_CONSOLE = "%Y-%m-%d %H:%M:%S"

# DEBUG: adds the emitting module and line
_FMT_DEBUG = "%(asctime)s %(levelname)-7s %(name)s:%(lineno)d  %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

# File output: always full detail
_FMT_FILE = "%(asctime)s %(levelname)-7s %(name)s:%(lineno)d  %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

# pip's vendored urllib3 and friends get chatty when DEBUG is global
_NOISY_LOGGERS = ("urllib3", "filelock", "git", "charset_normalizer")


def resolve_level(
    *,
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
) -> str:
    """Pick the console level from CLI flags, then the environment.

    ``--verbose`` and ``--debug`` both give DEBUG; the CLI keeps
    third-party loggers quiet for ``--verbose`` only.
    """
    if debug or verbose:
        return "DEBUG"
    if quiet:
        return "ERROR"
    return os.environ.get(ENV_LOG_LEVEL, DEFAULT_LEVEL)


def setup_logging(
    level: str = DEFAULT_LEVEL,
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure Python logging for the entire process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file. Falls back to
            ``PROVISION_LOG_FILE``.
        log_file_level: Optional separate level for the log file.
            Falls back to ``PROVISION_LOG_FILE_LEVEL``, then ``level``.
        quiet_third_party: Keep noisy third-party loggers at WARNING.
            The CLI turns this off for ``--debug``.
    """
    numeric_level = _parse_level(level)
    log_file = log_file or os.environ.get(ENV_LOG_FILE)
    log_file_level = log_file_level or os.environ.get(ENV_LOG_FILE_LEVEL)

    # ── Console handler (stderr) ────────────────────────────────
    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    elif numeric_level <= logging.WARNING:
        fmt, datefmt = _FMT_CONSOLE, _DATEFMT_CONSOLE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    # ── Root logger ─────────────────────────────────────────────
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    effective_level = numeric_level

    # ── File handler (optional) ─────────────────────────────────
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(fh)

    root.setLevel(effective_level)

    # ── Third-party noise control ───────────────────────────────
    if quiet_third_party:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Convert a level name to its numeric constant (INFO if unknown)."""
    if not level:
        return logging.INFO
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.INFO
    return numeric
