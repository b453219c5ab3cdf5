"""
Logging configuration for Ferry.

Console output goes through Rich (or a plain stream handler), with optional
file output using a clean, parseable format.
"""

import logging
import sys
import traceback
from pathlib import Path
from typing import Any

from rich.logging import RichHandler


class FileFormatter(logging.Formatter):
    """Formatter for file logs - clean and parseable."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with full exception info for errors."""
        # Exception text is appended below, not by the base class
        saved_exc_text = record.exc_text
        record.exc_text = None
        exc_info = record.exc_info
        record.exc_info = None
        try:
            result = super().format(record)
        finally:
            record.exc_info = exc_info
            record.exc_text = saved_exc_text

        if exc_info:
            result += "\n" + "".join(traceback.format_exception(*exc_info)).rstrip()

        return result


class PlainFormatter(logging.Formatter):
    """Console format "level: timestamp - msg", with file:line for errors."""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        base_format = f"{record.levelname}: {self.formatTime(record)} - {record.getMessage()}"
        if record.levelno >= logging.ERROR and record.pathname:
            filename = Path(record.pathname).name
            base_format = f"{record.levelname}: {self.formatTime(record)} - {filename}:{record.lineno} - {record.getMessage()}"
        return base_format


# Map string level names to logging constants
LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _parse_level(level: str | int) -> int:
    """
    Parse logging level from string or int.

    Args:
        level: Logging level as string (DEBUG, INFO, etc.) or int

    Returns:
        Logging level constant
    """
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        level_upper = level.upper()
        if level_upper in LEVEL_MAP:
            return LEVEL_MAP[level_upper]
    # Default to INFO if invalid
    return logging.INFO


def setup_logging(
    level: str | int = logging.INFO,
    log_file: str | Path | None = None,
    file_mode: str = "a",
    console_enabled: bool = True,
    use_rich: bool = True,
) -> logging.Logger:
    """
    Setup logging configuration for Ferry.

    Args:
        level: Logging level as string (DEBUG, INFO, etc.) or int (default: INFO)
        log_file: Optional file path to write logs to (default: None, console only)
        file_mode: File mode for file handler - 'a' for append, 'w' for overwrite (default: 'a')
        console_enabled: Whether to enable console logging (default: True)
        use_rich: Whether to use RichHandler for console output (default: True)

    Returns:
        The configured ``ferry`` logger
    """
    logger = logging.getLogger("ferry")

    # Only clear handlers from this specific logger, not root or child loggers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    level_int = _parse_level(level)
    logger.setLevel(level_int)
    logger.propagate = False

    # paramiko logs every channel event at INFO
    logging.getLogger("paramiko").setLevel(logging.WARNING)

    if console_enabled:
        if use_rich:
            logger.addHandler(
                RichHandler(
                    level=level_int,
                    show_time=True,
                    show_path=False,
                    markup=False,
                    rich_tracebacks=True,
                    tracebacks_show_locals=False,
                    log_time_format="[%X]",
                    omit_repeated_times=False,
                )
            )
        else:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(level_int)
            console_handler.setFormatter(PlainFormatter())
            logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode=file_mode)
        # File captures everything; the logger level still filters
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(FileFormatter())
        logger.addHandler(file_handler)

    return logger


def setup_logging_from_config(config: dict[str, Any], base_dir: Path | None = None) -> logging.Logger:
    """
    Setup logging from the ``logging`` section of a Ferry configuration.

    Args:
        config: Configuration dictionary (logging keys live under 'logging')
        base_dir: Optional directory for resolving a relative log file path

    Returns:
        The configured ``ferry`` logger
    """
    logging_config = config.get("logging") or {}

    level = logging_config.get("level", logging.INFO)
    file_mode = logging_config.get("file_mode", "a")
    console_enabled = logging_config.get("console_enabled", True)
    console_type = logging_config.get("console_type", "rich")

    log_file = logging_config.get("file")
    if log_file and base_dir:
        log_file = Path(log_file)
        if not log_file.is_absolute():
            log_file = base_dir / log_file

    return setup_logging(
        level=level,
        log_file=log_file,
        file_mode=file_mode,
        console_enabled=console_enabled,
        use_rich=console_type == "rich",
    )


def get_logger(name: str = "ferry") -> logging.Logger:
    """
    Get a logger instance under the ``ferry`` hierarchy.

    Args:
        name: Logger name (default: "ferry")

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
