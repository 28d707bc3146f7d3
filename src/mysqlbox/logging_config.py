"""
Logging configuration for MySQLBox

Provides console logging, optional rotating file logging, masking of
credentials in log messages and the per-instance driver log buffer.
"""

import io
import logging
import logging.handlers
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple


def setup_logging(
    log_dir: str = "logs",
    verbose: bool = False,
    log_level: Optional[str] = None,
    enable_file_logging: bool = False,
) -> logging.Logger:
    """
    Set up logging for MySQLBox operations.

    Args:
        log_dir: Directory for log files
        verbose: Enable verbose console output
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        enable_file_logging: Whether to write logs to files

    Returns:
        Configured logger instance
    """
    # Determine log level
    if log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear any existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_path = Path(log_dir)
    if enable_file_logging:
        log_path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_path / f"mysqlbox_{timestamp}.log"

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,  # 10MB files, 5 backups
        )
        file_handler.setLevel(logging.DEBUG)  # Always debug level for files
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logger = logging.getLogger("mysqlbox")
    logger.debug(f"Logging initialized - Level: {logging.getLevelName(level)}")
    if enable_file_logging:
        logger.debug(f"Log directory: {log_path.absolute()}")

    return logger


def mask_sensitive_data(message: str) -> str:
    """
    Mask sensitive information in log messages.

    Args:
        message: Log message that may contain sensitive data

    Returns:
        Message with sensitive information masked
    """
    # Mask database URLs
    message = re.sub(
        r"(mysql(?:\+\w+)?://[^:/@\s]+):([^@\s]+)@",
        r"\1:***@",
        message,
    )

    # Mask environment variables
    message = re.sub(r"MYSQL_ROOT_PASSWORD=[^\s,'\"]+", "MYSQL_ROOT_PASSWORD=***", message)

    # Mask password parameters
    message = re.sub(
        r"(password[=\s]+)(?!\*\*\*)[^\s,)'\"]+", r"\1***", message, flags=re.IGNORECASE
    )

    return message


class MaskingFormatter(logging.Formatter):
    """Formatter that runs every record through mask_sensitive_data."""

    def format(self, record: logging.LogRecord) -> str:
        return mask_sensitive_data(super().format(record))


def create_driver_logger(container_name: str) -> Tuple[logging.Logger, io.StringIO]:
    """
    Create the logger handed to a box's connection manager.

    Records are kept in an in-memory buffer owned by the box and still
    propagate to the regular mysqlbox loggers. The logger is not registered
    with the logging manager, so it goes away with the box.

    Returns:
        Tuple of (logger, buffer)
    """
    buffer = io.StringIO()
    driver_logger = logging.Logger(f"mysqlbox.driver.{container_name}", logging.DEBUG)
    driver_logger.parent = logging.getLogger("mysqlbox.driver")

    handler = logging.StreamHandler(buffer)
    handler.setFormatter(
        MaskingFormatter(
            "%(asctime)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    driver_logger.addHandler(handler)
    return driver_logger, buffer


def release_driver_logger(driver_logger: logging.Logger) -> None:
    """Detach and close the buffer handlers of a driver logger."""
    for handler in driver_logger.handlers[:]:
        driver_logger.removeHandler(handler)
        handler.close()


def configure_third_party_loggers() -> None:
    """Configure third-party library loggers to reduce noise."""
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("docker").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("pymysql").setLevel(logging.WARNING)


# Configure third-party loggers when module is imported
configure_third_party_loggers()
