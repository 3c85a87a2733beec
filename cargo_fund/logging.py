"""Logging utilities for the ``cargo-fund`` command."""

from __future__ import annotations

import logging

_LOGGER_NAME = "cargo_fund"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the cargo_fund hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def configure_logging(verbosity: int = 0) -> logging.Logger:
    """Send cargo_fund diagnostics to stderr.

    Args:
        verbosity: Number of ``-v`` flags.  Zero shows warnings only, one
            adds informational messages and two or more enable debug output.

    Returns:
        The package logger.
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Reset handlers to avoid duplicate output when main() runs more than once.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(logging.Formatter("[cargo-fund] %(levelname)s %(message)s"))
    logger.addHandler(stream_handler)
    return logger


__all__ = ["configure_logging", "get_logger"]
