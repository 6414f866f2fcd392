from __future__ import annotations

import logging
from copy import deepcopy
from typing import Any

from uvicorn.config import LOGGING_CONFIG

__all__ = [
    "LOGGER_NAME",
    "build_uvicorn_log_config",
    "set_debug_logging",
]

LOGGER_NAME = "jisub"
_LOG_FORMAT = "%(levelname)s [%(name)s] %(message)s"
_SERVER_LOG_FORMAT = "%(levelprefix)s [%(name)s] %(message)s"


def set_debug_logging(enabled: bool) -> None:
    """Route ``jisub`` logs to stderr at DEBUG when enabled; otherwise keep WARNING and above."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if enabled else logging.WARNING)
    if enabled and not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)


def build_uvicorn_log_config(debug: bool = False) -> dict[str, Any]:
    """
    Extend uvicorn's logging config so analyzer and enrichment logs share the
    server's handler, tagged with the emitting ``jisub`` module.
    """
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("default")
    if isinstance(formatter, dict):
        formatter["fmt"] = _SERVER_LOG_FORMAT
    loggers = config.setdefault("loggers", {})
    loggers[LOGGER_NAME] = {
        "handlers": ["default"],
        "level": "DEBUG" if debug else "INFO",
        "propagate": False,
    }
    return config
