"""Logging helpers: a TRACE level below DEBUG and CLI log setup."""

import logging
from functools import partialmethod

TRACE_LEVEL = 5

# Third-party loggers that are chatty at DEBUG
NOISY_LOGGERS = ("numba", "httpx", "httpcore", "aiosqlite")

_DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_BRIEF_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def install_trace_level() -> None:
    """Register TRACE and give every Logger a `trace()` method. Idempotent."""
    if logging.getLevelName(TRACE_LEVEL) != "TRACE":
        logging.addLevelName(TRACE_LEVEL, "TRACE")
    if not hasattr(logging.Logger, "trace"):
        logging.Logger.trace = partialmethod(logging.Logger.log, TRACE_LEVEL)


def get_logger(name: str) -> logging.Logger:
    """Module logger that supports `logger.trace(...)`."""
    install_trace_level()
    return logging.getLogger(name)


def configure_logging(verbose: bool = False, trace: bool = False) -> int:
    """
    Configure root logging for command-line use.

    Args:
        verbose: Log at DEBUG with logger names
        trace: Log at TRACE, including per-message channel activity

    Returns:
        The root level that was applied
    """
    install_trace_level()

    if trace or verbose:
        level = TRACE_LEVEL if trace else logging.DEBUG
        log_format = _DETAILED_FORMAT
        third_party_level = logging.INFO
    else:
        level = logging.WARNING
        log_format = _BRIEF_FORMAT
        third_party_level = logging.WARNING

    logging.basicConfig(level=level, format=log_format)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)
    return level
