"""Logging setup shared by the server entry point and background tasks."""
from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("tablecart")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure root logging once and return the package logger."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logger.setLevel(numeric_level)

    # aiohttp access log is noisy for long-lived websocket connections
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    return logger
