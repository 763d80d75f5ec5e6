import functools
import logging
import sys
from pathlib import Path
from typing import Optional, Union
from datetime import datetime


def setup_logging(
    level: Union[str, int] = logging.INFO,
    format_string: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
    console: bool = True
) -> logging.Logger:
    """
    Set up logging configuration for the application.

    Args:
        level: Logging level (string or logging constant)
        format_string: Custom format string for log messages
        log_file: Optional file path to write logs to
        console: Whether to log to stdout

    Returns:
        Configured root logger
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    if isinstance(level, str):
        level = getattr(logging, level.upper())

    formatter = logging.Formatter(format_string)

    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.setLevel(level)
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    return logger


def log_execution_time(func):
    """
    Decorator logging the wall time of a call at INFO, or the failure at ERROR.

    Args:
        func: Function to decorate

    Returns:
        Decorated function
    """
    logger = logging.getLogger(func.__module__)

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = datetime.now()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            duration = (datetime.now() - start_time).total_seconds()
            logger.error(f"{func.__name__} failed after {duration:.3f}s: {e}")
            raise
        duration = (datetime.now() - start_time).total_seconds()
        logger.info(f"{func.__name__} executed in {duration:.3f}s")
        return result

    return wrapper


class LoggerMixin:
    """
    Mixin class to add logging capability to any class.
    """

    @property
    def logger(self) -> logging.Logger:
        """Logger named after the concrete class."""
        return logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")
