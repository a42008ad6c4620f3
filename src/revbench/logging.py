"""Logging setup for revbench.

What a collection run logs, under the ``revbench.<module>`` loggers:

- INFO: one line per revision measured, retried or recorded, plus the
  benchmarks registered at discovery and the run summary.
- WARNING: per-revision failures (install errors, failing benchmarks,
  timeouts) and configuration warnings.
- DEBUG: git and download detail, per-iteration timings, store writes.

Console output goes to stderr so records printed as JSON on stdout stay
machine-readable.  A ``--log-file`` always receives DEBUG, so a long
unattended run leaves a complete trail even when the console is quiet.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from revbench.errors import ConfigError

_LOGGER_NAME = "revbench"
_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(levelname)-8s %(message)s"

# Chatty libraries used for artifact downloads.
_NOISY_LOGGERS = ("urllib3", "requests")


def setup_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure and return the ``revbench`` logger.

    Args:
        verbose: Console at DEBUG, and HTTP client logging is let through.
        quiet: Console at WARNING. Ignored if *verbose* is set.
        log_file: Append DEBUG output to this file, creating its directory.

    Raises:
        ConfigError: If *log_file* cannot be opened.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    if verbose:
        console.setLevel(logging.DEBUG)
    elif quiet:
        console.setLevel(logging.WARNING)
    else:
        console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Cannot open log file {log_file}: {exc}") from exc
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(fh)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get the logger for a revbench module, e.g. ``get_logger("store")``."""
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")
