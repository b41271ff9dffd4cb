"""Logging for the workspace server.

Every module logs events through structlog:

    logger = get_logger(__name__)
    logger.info("pool_initialized", size=5, path="data/database.sqlite")

``configure_logging`` is called once by the CLI. Until then structlog's
defaults print to stdout.

Output goes to stderr, or to ``log_file`` when one is given (``LOG_FILE``
or ``--log-file``). Files always get JSON lines; the console gets the
human-readable renderer unless ``json_output`` is set.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

# aiosqlite logs every proxied call at DEBUG
_NOISY_LOGGERS = ("aiosqlite", "asyncio")


def _handler(log_file: Path | None) -> logging.Handler:
    if log_file is None:
        return logging.StreamHandler(sys.stderr)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(log_file, encoding="utf-8")


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Path | None = None,
    colors: bool = True,
) -> None:
    """Route structlog events through the stdlib root logger.

    Args:
        level: Log level name; unknown names fall back to INFO
        json_output: Render JSON instead of console lines
        log_file: Append to this file instead of writing to stderr
        colors: Colorize console output
    """
    handler = _handler(log_file)
    handler.setFormatter(logging.Formatter("%(message)s"))
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, handlers=[handler], force=True)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    renderer: structlog.types.Processor
    if json_output or log_file is not None:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=colors)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for a module (pass ``__name__``)."""
    return structlog.get_logger(name)
