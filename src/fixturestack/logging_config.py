"""
Logging configuration for fixturestack

Configures the ``fixturestack`` logger hierarchy, masks credentials that
fixtures generate, and keeps a dedicated log for container runtime commands.
"""

import logging
import logging.handlers
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

LOGGER_NAME = "fixturestack"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    log_dir: str = "logs",
    verbose: bool = False,
    log_level: Optional[str] = None,
    enable_file_logging: bool = False,
    console: bool = False,
) -> logging.Logger:
    """
    Set up logging for fixturestack operations.

    Only the ``fixturestack`` logger is configured; records still propagate
    to the root logger, so pytest's log capture keeps working. Calling this
    again replaces the handlers added by the previous call.

    Args:
        log_dir: Directory for the rotating log file
        verbose: Use DEBUG when no explicit level is given
        log_level: Explicit level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_file_logging: Write a rotating log file under ``log_dir``
        console: Also write to stdout

    Returns:
        The configured ``fixturestack`` logger
    """
    if log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if enable_file_logging:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path / "fixturestack.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.debug(f"Log directory: {log_path.absolute()}")

    # Connection attempts during readiness polling are expected to fail
    logging.getLogger("psycopg2").setLevel(logging.WARNING)

    logger.debug(f"Logging initialized - Level: {logging.getLevelName(level)}")
    return logger


def mask_sensitive_data(message: str) -> str:
    """
    Mask sensitive information in log messages.

    Args:
        message: Log message that may contain sensitive data

    Returns:
        Message with sensitive information masked
    """
    # Mask database URLs, with or without a database segment
    message = re.sub(
        r"(postgres(?:ql)?://[^:/@\s]+):([^@\s]+)@",
        r"\1:***@",
        message,
    )

    # Mask environment variables handed to containers
    message = re.sub(r"POSTGRES_PASSWORD=[^\s]+", "POSTGRES_PASSWORD=***", message)

    # Mask password parameters
    message = re.sub(
        r"(?<![A-Z_])password=[^\s]+", "password=***", message, flags=re.IGNORECASE
    )

    return message


class SubprocessLogHandler:
    """
    Handler for container runtime commands with dedicated logging.

    Commands and their output always go to the ``fixturestack.subprocess``
    logger. When ``log_dir`` is given they are also written to
    ``<log_dir>/containers/<operation>_<timestamp>.log``; that file handler is
    attached once per operation and shared by every later handler instance.
    """

    def __init__(self, operation: str, log_dir: Optional[str] = None):
        """
        Initialize subprocess log handler.

        Args:
            operation: Name of the operation being logged
            log_dir: Base directory for log files, or None for no file output
        """
        self.operation = operation
        self.log_file = None
        self.logger = logging.getLogger(f"{LOGGER_NAME}.subprocess.{operation}")

        if log_dir is not None:
            self.log_file = self._attach_file_handler(Path(log_dir))

    def _attach_file_handler(self, log_dir: Path) -> str:
        for handler in self.logger.handlers:
            if isinstance(handler, logging.FileHandler):
                return handler.baseFilename

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / "containers" / f"{self.operation}_{timestamp}.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.FileHandler(log_file)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(levelname)s - %(message)s", datefmt=DATE_FORMAT)
        )
        self.logger.addHandler(handler)
        self.logger.setLevel(logging.DEBUG)
        return handler.baseFilename

    def log_command(self, command: List[str]) -> None:
        """Log the command being executed."""
        masked_command = [mask_sensitive_data(arg) for arg in command]
        self.logger.info(f"Executing command: {' '.join(masked_command)}")

    def log_output(self, output: str, level: int = logging.DEBUG) -> None:
        """Log subprocess output."""
        if output and output.strip():
            masked_output = mask_sensitive_data(output.strip())
            self.logger.log(level, masked_output)

    def log_completion(self, return_code: int, elapsed_time: float) -> None:
        """Log subprocess completion."""
        if return_code == 0:
            self.logger.debug(
                f"{self.operation} command completed in {elapsed_time:.2f}s"
            )
        else:
            self.logger.error(
                f"{self.operation} command failed with return code {return_code} "
                f"after {elapsed_time:.2f}s"
            )

    def get_log_file_path(self) -> Optional[str]:
        """Get the path to the log file for this operation."""
        return self.log_file
