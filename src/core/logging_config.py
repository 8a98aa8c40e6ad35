"""Logging setup for the API process and the scheduler runner."""
import logging
import logging.config

from src.core.config import settings


def setup_logging(level: str | None = None) -> None:
    """Configure root logging once per process."""

    log_level = (level or settings.LOG_LEVEL).upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {"handlers": ["console"], "level": log_level},
            "loggers": {
                # SQL echo is controlled by the engine, keep the logger quiet
                "sqlalchemy.engine": {"level": "WARNING"},
                "apscheduler": {"level": "INFO"},
            },
        }
    )
