"""Logging configuration with request correlation ids."""

from __future__ import annotations

import logging
import logging.config

from app.core.config import get_settings


def configure_logging() -> None:
    """Install console logging that stamps each record with the request id."""

    settings = get_settings()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "correlation_id": {
                    "()": "asgi_correlation_id.CorrelationIdFilter",
                    "uuid_length": 32,
                    "default_value": "-",
                },
                "sensitive": {"()": "app.security.logging_filters.SensitiveFilter"},
            },
            "formatters": {
                "console": {
                    "format": "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "filters": ["correlation_id", "sensitive"],
                    "formatter": "console",
                },
            },
            "loggers": {
                "app": {"handlers": ["console"], "level": settings.log_level, "propagate": False},
                "uvicorn": {"handlers": ["console"], "level": "INFO", "propagate": False},
            },
        }
    )
