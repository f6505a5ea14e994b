"""Logging configuration for hamqtt_integration."""

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every packet at DEBUG
NOISY_LOGGERS = ("asyncio", "aiomqtt", "paho")


def _file_handler(log_file: Path) -> logging.Handler:
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(log_file)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    format_string: Optional[str] = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> logging.Logger:
    """Configure the root logger for a running app.

    Replaces any handlers already installed on the root logger, so calling
    it again on reconnect-free restarts does not duplicate output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for log output
        format_string: Custom log format string
        quiet: Logger names capped at WARNING unless ``level`` is DEBUG

    Returns:
        The configured root logger
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(format_string or DEFAULT_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(_file_handler(log_file))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    if numeric_level > logging.DEBUG:
        for name in quiet:
            logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging configured: level={level.upper()}")
    if log_file:
        root_logger.info(f"Log file: {log_file}")
    return root_logger
