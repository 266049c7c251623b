"""
logging_config.py — Loguru setup for Abi

Every module logs through Loguru. Services keep using stdlib
getLogger("abi.<area>") and a bridge handler forwards those records, so
chat turns, ledger writes and approval transitions land in one stream
tagged with the request id set by the middleware in main.py.

Business Rules:
- Production: JSON lines on stdout plus a rotated, compressed file
- Development: one coloured line per record, request id in the middle
- Model-client and SQL chatter is held at WARNING
- Reconfiguring is safe; each call replaces the previous sinks

Called by: abi/main.py lifespan, tests/test_middleware.py
Depends on: abi/config.py (log_level, log_file, rotation, retention)
"""

import logging
import sys

from loguru import logger

from .config import settings

# Loggers whose INFO output drowns out the chat pipeline
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine", "slowapi")

DEV_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> "
    "<level>{level: <7}</level> "
    "[<magenta>{extra[request_id]}</magenta>] "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> {message}"
)


class StdlibBridge(logging.Handler):
    """Forward a stdlib LogRecord to Loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        level: str | int
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = sys._getframe(6), 6
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _add_sinks(level: str) -> None:
    if not settings.is_production:
        logger.add(sys.stdout, level=level, format=DEV_FORMAT, colorize=True)
        return
    logger.add(sys.stdout, level=level, serialize=True)
    logger.add(
        settings.log_file,
        level=level,
        serialize=True,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
        compression="gz",
        enqueue=True,
    )


def setup_logging() -> None:
    """Install the Abi sinks and route stdlib logging into them."""
    level = settings.log_level.upper()

    logger.remove()
    logger.configure(extra={"request_id": "-"})
    _add_sinks(level)

    logging.basicConfig(handlers=[StdlibBridge()], level=0, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging ready ({}, production={})", level, settings.is_production)
