"""Logging configuration for photobatch."""

from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import structlog

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO", *, log_dir: Path | None = None) -> None:
    """Configure stdlib logging and structlog.

    When ``log_dir`` is given, a daily rotated ``photobatch.log`` is written
    there in addition to the console output (seven days are kept).
    """
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        root = logging.getLogger()
        target = str((log_dir / "photobatch.log").resolve())
        if not any(
            isinstance(handler, TimedRotatingFileHandler) and handler.baseFilename == target
            for handler in root.handlers
        ):
            handler = TimedRotatingFileHandler(
                target, when="midnight", backupCount=7, encoding="utf-8"
            )
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
