# services/logger_config.py
import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Optional, Union
from config import settings

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("urllib3", "sqlalchemy.engine", "aiosqlite")


def _resolve_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = settings.LOG_LEVEL
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        return value if isinstance(value, int) else logging.INFO
    return level


def setup_logging(level: Union[int, str, None] = None, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configures the assistant's logger.

    Everything from DEBUG up goes to a rotating file; the console shows
    `level` and above (LOG_LEVEL from settings when omitted). Calling it again
    replaces the handlers instead of stacking them.
    """
    logger = logging.getLogger(settings.LOGGER_NAME)
    console_level = _resolve_level(level)
    log_file = log_file or settings.LOG_FILE_PATH

    # Avoid adding duplicate handlers if this function is called multiple times
    if logger.hasHandlers():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
    )

    # File Handler: full detail, including retry and rate-limit traces.
    try:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=5,
            encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)
    except OSError as e:
        print(f"Error setting up file logger: {e}")

    # Console Handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(console_level)
    logger.addHandler(console_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Logging configured (console level {logging.getLevelName(console_level)})")
    return logger
