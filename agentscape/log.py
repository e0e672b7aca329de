"""Logging configuration using loguru.

Every record carries a ``spreadsheet`` extra so that output from several
attached workspaces in one process stays attributable; ``Workspace`` binds
it, and unbound records show ``-``.

Stdlib logging (httpx, httpcore, embedding applications) is intercepted and
re-emitted through loguru.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[spreadsheet]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


class _InterceptHandler(logging.Handler):
    """Bridge stdlib logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging-module frames so loguru reports the real call-site
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", *, json: bool = False) -> None:
    """Install loguru as the only sink, on stderr.

    ``json=True`` switches to loguru's serialized one-record-per-line output
    for log shippers.  Safe to call again to change the level.
    """
    level = level.upper()

    logger.remove()
    logger.configure(extra={"spreadsheet": "-"})
    if json:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_FORMAT)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    # One line per HTTP request drowns the retry log
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging configured (level={}, json={})", level, json)
