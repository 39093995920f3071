from __future__ import annotations

import logging.config
import os

LOG_LEVEL_ENV = "STAFFCRM_LOG_LEVEL"


def setup_logging(level: str | None = None) -> None:
    """Send staffcrm logs to stderr. Level from the argument, then STAFFCRM_LOG_LEVEL, then WARNING."""
    level = (level or os.getenv(LOG_LEVEL_ENV) or "WARNING").upper()
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {
                "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": "plain",
            },
        },
        "loggers": {
            "staffcrm": {"handlers": ["stderr"], "level": level, "propagate": False},
            "urllib3": {"handlers": ["stderr"], "level": "WARNING", "propagate": False},
        },
    }
    logging.config.dictConfig(config)
