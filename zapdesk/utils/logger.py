"""
Logging setup for the zapdesk console.

One "zapdesk" logger is shared by every component. The console runs an
asyncio loop thread next to Flask request threads, so records carry the
thread name. Chatty client libraries are held at WARNING unless
LOG_LEVEL_LIBS says otherwise.
"""

import logging
import os
import sys
from typing import Optional


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# httpx logs every webhook reply and gateway call at INFO
NOISY_LIBRARIES = ("httpx", "httpcore", "openai", "apscheduler", "werkzeug")


def _level(name: Optional[str], fallback: int = logging.INFO) -> int:
    if not name:
        return fallback
    return getattr(logging, name.upper(), fallback)


def setup_logger(
    name: str = "zapdesk",
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the console logger once and return it.

    Args:
        name: Logger name
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: LOG_LEVEL env var, then INFO)
        log_file: Extra file destination (default: LOG_FILE env var, if set)

    Returns:
        The configured logger; later calls return it unchanged
    """
    log_level = _level(level or os.getenv("LOG_LEVEL"))
    log_file = log_file or os.getenv("LOG_FILE")

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    library_level = _level(os.getenv("LOG_LEVEL_LIBS"), logging.WARNING)
    for library in NOISY_LIBRARIES:
        logging.getLogger(library).setLevel(library_level)

    return logger


logger = setup_logger()
