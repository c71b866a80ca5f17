"""Loguru configuration shared by the CLI, the web app and the worker threads."""
from __future__ import annotations

import logging
import sys

from loguru import logger

LOG_FORMAT = " | ".join(
    (
        "<lk>{time:YYYY-MM-DD HH:mm:ss.SSS}</>",
        "<lvl>{level:<8}</>",
        "<c>{name}::{function}:{line}</>",
        "{message}",
        "<lk>{extra}</>",
    )
)


class InterceptHandler(logging.Handler):
    """Forward records from stdlib loggers (SQLAlchemy, uvicorn) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str = "INFO") -> None:
    """Replace loguru's default sink and route stdlib logging through it."""

    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level, enqueue=False)
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("sqlalchemy.engine", "uvicorn", "uvicorn.access"):
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False


__all__ = ["InterceptHandler", "LOG_FORMAT", "configure_logging"]
