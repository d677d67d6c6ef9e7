from __future__ import annotations
import logging.config
from typing import Any, Dict

def build_logging_config(level: str = "INFO") -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": 'timestamp="%(asctime)s" logger="%(name)s" level="%(levelname)s" msg="%(message)s"',
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "root": {"handlers": ["console"], "level": level.upper()},
        "loggers": {
            # engine echo is noisy at INFO
            "sqlalchemy.engine": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
        },
    }

def configure_logging(level: str = "INFO") -> None:
    logging.config.dictConfig(build_logging_config(level))
