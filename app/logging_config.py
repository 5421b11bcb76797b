"""
Logging configuration.

Call setup_logging() once at application startup.  Modules log through
``logging.getLogger(__name__)``; everything under ``app`` shares one
console handler.
"""

from __future__ import annotations

import logging
import logging.config
import sys
from typing import Any


def get_logging_config(log_level: str = "INFO") -> dict[str, Any]:
    """
    Build the dictConfig for the service.

    Args:
        log_level: Level for application loggers (DEBUG, INFO, WARNING, ...)
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)-8s %(name)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "default",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "app": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn.access": {
                "level": "WARNING",  # access log noise
                "handlers": ["console"],
                "propagate": False,
            },
            "aiosqlite": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "aiosmtplib": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "httpx": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": ["console"],
        },
    }


def setup_logging(log_level: str = "INFO") -> None:
    """Apply the logging configuration."""
    logging.config.dictConfig(get_logging_config(log_level.upper()))
    logging.getLogger(__name__).info("Logging configured with level: %s", log_level.upper())
