"""Logging configuration shared by the API server and the batch jobs."""

from __future__ import annotations

import logging
import os
from logging.config import dictConfig
from typing import Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Install the console handler used by every entry point.

    Args:
        level: Explicit log level (e.g. from ``--log-level``). Falls back to
            ``TI_LOG_LEVEL`` and then ``INFO``.
    """
    log_level = (level or os.getenv("TI_LOG_LEVEL", "INFO")).upper()
    log_format = os.getenv("TI_LOG_FORMAT", DEFAULT_LOG_FORMAT)

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {"format": log_format},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": log_level,
                },
            },
            "root": {"handlers": ["console"], "level": log_level},
            "loggers": {
                # uvicorn installs its own handlers; route them through ours instead.
                "uvicorn": {"handlers": ["console"], "level": log_level, "propagate": False},
                "uvicorn.error": {"handlers": ["console"], "level": log_level, "propagate": False},
                "uvicorn.access": {
                    "handlers": ["console"],
                    "level": os.getenv("UVICORN_ACCESS_LOG_LEVEL", "INFO").upper(),
                    "propagate": False,
                },
                # requests/urllib3 connection chatter drowns out evaluation logs at DEBUG.
                "urllib3": {"level": "WARNING"},
                "sqlalchemy.engine": {"level": os.getenv("TI_SQL_LOG_LEVEL", "WARNING").upper()},
            },
        }
    )

    logging.getLogger(__name__).debug("Console logging active (level=%s)", log_level)
