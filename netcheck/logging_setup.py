"""Application logging: rotating ``logs/app.log`` plus warnings on the terminal."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.logging import RichHandler

from .config import AppConfig

LOG_FILE = "app.log"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5

# Chatty at INFO on every scheduler tick or HTTP request.
QUIET_LOGGERS = ("apscheduler", "urllib3")


def _file_handler(log_path: Path) -> logging.Handler:
    handler = RotatingFileHandler(log_path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def configure_logging(config: AppConfig, console: bool = True) -> Path:
    """Install the root handlers and return the log file path.

    Calling it again replaces the previous handlers, so repeated scheduled runs
    never write each record twice.
    """
    config.paths.logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = config.paths.logs_dir / LOG_FILE

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(_file_handler(log_path))
    if console:
        # Progress goes through the Reporter; the log only surfaces problems on screen.
        console_handler = RichHandler(level=logging.WARNING, show_path=False, markup=False)
        root_logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return log_path
