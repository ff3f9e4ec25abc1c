"""Logging setup shared by the RequestKit library and CLI.

Library modules call ``get_logger(__name__)``; the CLI calls
``configure_logging`` once with its ``--verbose``/``--quiet`` flags.
"""

import logging
import sys
from typing import Any, Dict, Iterator, Optional, TextIO

PACKAGE_LOGGER = "requestkit"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LEVELS_BY_NAME = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Per-template and per-edge chatter; held at WARNING unless verbose
NOISY_MODULES = (
    "requestkit.core.variables.parser",
    "requestkit.core.variables.dependencies",
    "requestkit.core.variables.cache",
)


def _stream_handler(stream: Optional[TextIO] = None) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def _package_logger_names() -> Iterator[str]:
    for name in list(logging.root.manager.loggerDict):
        if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
            yield name


def get_logger(name: str) -> logging.Logger:
    """Return the named logger with a single stderr handler attached.

    Args:
        name: Logger name, usually the module's ``__name__``

    Returns:
        Logger that does not propagate to the root logger
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(_stream_handler())
        # Root gets its own handler in configure_logging
        logger.propagate = False
    return logger


def resolve_level(
    verbose: bool = False, quiet: bool = False, level: Optional[str] = None
) -> int:
    """Turn CLI flags into a logging level; an explicit name wins."""
    if level is not None:
        return LEVELS_BY_NAME.get(level.lower(), logging.INFO)
    if quiet:
        return logging.WARNING
    if verbose:
        return logging.DEBUG
    return logging.INFO


def configure_logging(
    verbose: bool = False,
    quiet: bool = False,
    level: Optional[str] = None,
) -> None:
    """Apply the CLI logging flags to the root and package loggers.

    Args:
        verbose: Show debug output, including the noisy modules
        quiet: Only show warnings and errors
        level: Explicit level name such as ``"debug"``; overrides the flags
    """
    effective = resolve_level(verbose=verbose, quiet=quiet, level=level)

    root_logger = logging.getLogger()
    root_logger.setLevel(effective)
    root_logger.handlers[:] = [_stream_handler(sys.stderr)]

    for name in _package_logger_names():
        logging.getLogger(name).setLevel(effective)

    noisy_level = logging.DEBUG if verbose else max(effective, logging.WARNING)
    for name in NOISY_MODULES:
        logging.getLogger(name).setLevel(noisy_level)


def get_logging_status() -> Dict[str, Any]:
    """Levels and handler state of the root logger and every package logger."""
    modules = {}
    for name in _package_logger_names():
        logger = logging.getLogger(name)
        modules[name] = {
            "level": logging.getLevelName(logger.level),
            "propagate": logger.propagate,
            "has_handlers": bool(logger.handlers),
        }
    return {
        "root_level": logging.getLevelName(logging.getLogger().level),
        "modules": modules,
    }
