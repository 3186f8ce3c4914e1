"""Logging setup shared by the bot, the HTTP app and the workers."""

from __future__ import annotations

import logging
from typing import Optional

ROOT_LOGGER_NAME = "relaybot"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

_LOGGING_CONFIGURED = False


def setup_logging(level_name: Optional[str] = None) -> None:
    """
    Configure application logging once per process.

    Attaches a console handler to the root logger (unless one is already there,
    e.g. from uvicorn) and sets the level from LOG_LEVEL, defaulting to INFO.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    if level_name is None:
        from relaybot.config import get_settings

        level_name = get_settings().log_level
    level_value = getattr(logging, str(level_name).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(level_value)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
    )
    if not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(console_handler)

    # httpx logs every backend request at INFO, which drowns out the bot's own logs
    logging.getLogger("httpx").setLevel(max(level_value, logging.WARNING))

    _LOGGING_CONFIGURED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger under the application namespace."""
    if not name:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
