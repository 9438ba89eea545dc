"""
Loguru setup shared by prompt-lab worker processes.

Everything goes to one stdout sink. Records emitted through the standard
``logging`` module (httpx, openai, celery) are re-emitted through loguru so
that they share its format, and every line carries the service name.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "{extra[service]} | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

# HTTP clients log every request at INFO
LIBRARY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "openai": logging.INFO,
    "celery": logging.INFO,
}


class InterceptHandler(logging.Handler):
    """Re-emits a stdlib ``LogRecord`` through loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip the logging module's own frames
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", service_name: str = "prompt-lab") -> None:
    logger.remove()
    logger.configure(extra={"service": service_name})
    logger.add(sys.stdout, format=LOG_FORMAT, level=level, colorize=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, library_level in LIBRARY_LEVELS.items():
        library_logger = logging.getLogger(name)
        library_logger.handlers = [InterceptHandler()]
        library_logger.propagate = False
        library_logger.setLevel(library_level)

    logger.debug(f"Logging configured for {service_name} at {level}")
