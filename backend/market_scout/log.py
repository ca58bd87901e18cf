from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path

from market_scout.config import Settings, settings as default_settings


def setup_logging(config: Settings | None = None) -> None:
    """
    Configure process-wide logging.

    - console stream handler
    - rotating file handler (``<log_dir>/market_scout.log``) when ``log_dir`` is set
    - uvicorn / sqlalchemy / httpx logger levels aligned with the app
    """
    config = config or default_settings
    level = config.log_level.upper()

    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "default",
        },
    }
    if config.log_dir:
        log_dir = Path(config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "default",
            "filename": str(log_dir / "market_scout.log"),
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
        }

    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": {
            "": {"handlers": list(handlers), "level": level},
            "uvicorn": {"level": "INFO"},
            "uvicorn.error": {"level": "INFO"},
            "uvicorn.access": {"level": "INFO", "propagate": False, "handlers": ["console"]},
            "sqlalchemy.engine": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
        },
    })


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
