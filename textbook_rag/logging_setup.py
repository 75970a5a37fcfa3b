"""Root logger configuration."""

import logging
import logging.config

from textbook_rag.config import LoggingConfig


def setup_logging(config: LoggingConfig) -> None:
    """Configure console logging for the application.

    httpx request logs are kept at WARNING unless the level is DEBUG.
    """
    level = config.level.upper()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": config.format,
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": level,
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {
                "handlers": ["console"],
                "level": level,
            },
        }
    )

    # Suppress httpx request logs unless in debug mode
    httpx_level = logging.DEBUG if level == "DEBUG" else logging.WARNING
    logging.getLogger("httpx").setLevel(httpx_level)
    logging.getLogger("httpcore").setLevel(httpx_level)
