"""
Logging for the translator service.

Three handlers on the root logger:
- console, at ``LOG_CONSOLE_LEVEL``
- a rotating pipeline log with every DEBUG line (unit writes, model fallbacks)
- an error log kept separately so failed jobs are easy to find

Records carry the thread name: requests, the job-queue consumer and the
unit workers all log concurrently.
"""

import logging
import logging.config
import os

from configs.config import get_config

cfg = get_config()

# Client libraries that log every request at DEBUG
_QUIET_LOGGERS = ("urllib3", "httpx", "httpcore", "openai", "pymongo")


def _ensure_parent_dir(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def setup_logging() -> None:
    """Configure logging once at application startup."""
    for path in (cfg.LOG_FILE_APP, cfg.LOG_FILE_ERRORS):
        _ensure_parent_dir(path)

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "pipeline": {
                "format": (
                    "%(asctime)s [%(threadName)s] %(name)s "
                    "%(levelname)s: %(message)s"
                ),
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": cfg.LOG_CONSOLE_LEVEL,
                "formatter": "pipeline",
            },
            "pipeline_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": "DEBUG",
                "formatter": "pipeline",
                "filename": cfg.LOG_FILE_APP,
                "maxBytes": cfg.LOG_MAX_BYTES,
                "backupCount": cfg.LOG_BACKUP_COUNT,
                "encoding": "utf8",
            },
            "error_file": {
                "class": "logging.FileHandler",
                "level": "ERROR",
                "formatter": "pipeline",
                "filename": cfg.LOG_FILE_ERRORS,
                "encoding": "utf8",
            },
        },
        "loggers": {
            name: {"level": "WARNING"} for name in _QUIET_LOGGERS
        },
        "root": {
            "level": "DEBUG",
            "handlers": ["console", "pipeline_file", "error_file"],
        },
    }

    logging.config.dictConfig(logging_config)
    logging.getLogger(__name__).info(
        "Logging to %s (errors: %s)", cfg.LOG_FILE_APP, cfg.LOG_FILE_ERRORS
    )
