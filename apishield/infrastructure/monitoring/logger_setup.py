"""Logging configuration for apishield.

Handlers are attached to the `apishield` package logger rather than the root
logger, so embedding applications keep control of their own logging. The
level may be given as a name ('debug', 'WARNING') as it arrives from the
`--log-level` option, the `logging.level` setting or APISHIELD_LOGGING_LEVEL.
"""

import logging
import sys
from typing import Optional, Union

APP_LOGGER_NAME = "apishield"
DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

def resolve_log_level(name: Union[str, int], default: int = DEFAULT_LOG_LEVEL) -> int:
    """Maps a level name such as 'debug' to its logging constant."""
    if isinstance(name, int):
        return name
    level = logging.getLevelName(str(name).strip().upper())
    return level if isinstance(level, int) else default

def setup_logging(
    log_level: Union[str, int] = DEFAULT_LOG_LEVEL,
    log_format: str = DEFAULT_LOG_FORMAT,
    log_file: Optional[str] = None
) -> logging.Logger:
    """Configures the apishield logger and returns it.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        log_level: Level name or constant; unknown names fall back to INFO.
        log_format: The format string for log messages.
        log_file: Optional path to a file receiving the same records.
    """
    level = resolve_log_level(log_level)
    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(level)
    app_logger.propagate = False

    for handler in app_logger.handlers[:]:
        app_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setFormatter(formatter)
            app_logger.addHandler(file_handler)
        except OSError as e:
            app_logger.error(f"Failed to set up file logging to {log_file}: {e}")

    app_logger.debug(f"Logging configured. Level={logging.getLevelName(level)}, file={log_file}")
    return app_logger
